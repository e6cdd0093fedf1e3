"""Unit tests for typed command requests."""

import pytest
from pydantic import ValidationError

from torcontrol_runtime.protocol.commands import (
    AddOnion,
    AttachStream,
    Authenticate,
    CloseCircuit,
    CloseStream,
    DelOnion,
    ExtendCircuit,
    GetConf,
    GetInfo,
    HSFetch,
    MapAddress,
    OnionFlag,
    OnionPort,
    Quit,
    ResetConf,
    SaveConf,
    SendSignal,
    SetCircuitPurpose,
    SetConf,
    SetEvents,
    SetRouterPurpose,
    Signal,
    quote,
    unquote,
    validate_command_line,
)

# =============================================================================
# Helpers
# =============================================================================


class TestLineHelpers:
    """Test line validation and quoting."""

    def test_single_line_accepted(self):
        assert validate_command_line("GETINFO version") == "GETINFO version"

    @pytest.mark.parametrize("text", ["", "   ", "GETINFO a\r\nQUIT", "GETINFO a\nQUIT"])
    def test_empty_or_multi_line_rejected(self, text):
        with pytest.raises(ValueError):
            validate_command_line(text)

    def test_quote_plain_value_unchanged(self):
        assert quote("9050") == "9050"

    def test_quote_whitespace_and_quotes(self):
        assert quote("me at example") == '"me at example"'
        assert quote('say "hi"') == '"say \\"hi\\""'
        assert quote("") == '""'

    def test_unquote(self):
        assert unquote('"127.0.0.1:9050"') == "127.0.0.1:9050"
        assert unquote('"say \\"hi\\""') == 'say "hi"'
        assert unquote("plain") == "plain"


# =============================================================================
# Session and configuration
# =============================================================================


class TestSessionCommands:
    """Test AUTHENTICATE and QUIT."""

    def test_authenticate_with_secret(self):
        assert Authenticate(secret="736563726574").to_line() == "AUTHENTICATE 736563726574"

    def test_authenticate_without_secret(self):
        """Null authentication sends the bare keyword."""
        assert Authenticate().to_line() == "AUTHENTICATE"

    def test_authenticate_rejects_non_hex(self):
        with pytest.raises(ValidationError):
            Authenticate(secret="not hex")

    def test_quit(self):
        assert Quit().to_line() == "QUIT"


class TestConfigurationCommands:
    """Test GETCONF, SETCONF, RESETCONF and SAVECONF."""

    def test_getconf_keys(self):
        assert GetConf(keys=["SocksPort", "ORPort"]).to_line() == "GETCONF SocksPort ORPort"

    def test_getconf_single_key_string(self):
        assert GetConf(keys="SocksPort").to_line() == "GETCONF SocksPort"

    def test_getconf_requires_a_key(self):
        with pytest.raises(ValidationError):
            GetConf(keys=[])

    def test_getconf_rejects_whitespace_in_key(self):
        with pytest.raises(ValidationError):
            GetConf(keys=["Socks Port"])

    def test_setconf_serialization(self):
        """Values are quoted when needed, booleans become 1/0, None resets."""
        command = SetConf(
            settings={
                "SocksPort": 9050,
                "ContactInfo": "me at example",
                "ExitRelay": False,
                "Nickname": None,
            }
        )

        assert command.to_line() == (
            'SETCONF SocksPort=9050 ContactInfo="me at example" ExitRelay=0 Nickname'
        )

    def test_setconf_rejects_line_break_in_value(self):
        """A value cannot smuggle a second command onto the wire."""
        with pytest.raises(ValidationError):
            SetConf(settings={"ContactInfo": "a\r\nSIGNAL HALT"})

    def test_resetconf(self):
        assert ResetConf(keys=["SocksPort"]).to_line() == "RESETCONF SocksPort"

    def test_saveconf(self):
        assert SaveConf().to_line() == "SAVECONF"
        assert SaveConf(force=True).to_line() == "SAVECONF FORCE"


# =============================================================================
# Events, signals, queries
# =============================================================================


class TestSetEvents:
    """Test SETEVENTS normalization."""

    def test_names_upper_cased_and_deduplicated(self):
        command = SetEvents(events=["circ", "bw", "CIRC"])

        assert command.events == ["CIRC", "BW"]
        assert command.to_line() == "SETEVENTS CIRC BW"

    def test_empty_set_disables_events(self):
        assert SetEvents().to_line() == "SETEVENTS"


class TestSignalAndQueries:
    """Test SIGNAL, MAPADDRESS and GETINFO."""

    def test_signal_case_insensitive(self):
        command = SendSignal(signal="newnym")

        assert command.signal == Signal.NEWNYM
        assert command.to_line() == "SIGNAL NEWNYM"

    def test_unknown_signal_rejected(self):
        with pytest.raises(ValidationError):
            SendSignal(signal="EXPLODE")

    def test_mapaddress(self):
        command = MapAddress(mappings={"1.2.3.4": "torproject.org"})

        assert command.to_line() == "MAPADDRESS 1.2.3.4=torproject.org"

    def test_getinfo(self):
        command = GetInfo(keys=["version", "net/listeners/socks"])

        assert command.to_line() == "GETINFO version net/listeners/socks"


# =============================================================================
# Onion services
# =============================================================================


class TestOnionCommands:
    """Test ADD_ONION, DEL_ONION and HSFETCH."""

    def test_add_onion_new_key(self):
        command = AddOnion(ports=[(80, "127.0.0.1:8080")], flags=["Detach"])

        assert command.to_line() == "ADD_ONION NEW:BEST Flags=Detach Port=80,127.0.0.1:8080"

    def test_add_onion_existing_key(self):
        command = AddOnion(ports=80, private_key="abcd", key_type="RSA1024")

        assert command.to_line() == "ADD_ONION RSA1024:abcd Port=80"

    def test_add_onion_default_key_type(self):
        command = AddOnion(ports=[80], private_key="abcd")

        assert command.to_line() == "ADD_ONION ED25519-V3:abcd Port=80"

    def test_add_onion_flags_joined_and_deduplicated(self):
        command = AddOnion(
            ports=[(80, 8080), OnionPort(virtport=443)],
            flags=[OnionFlag.DISCARD_PK, "Detach", "DiscardPK"],
        )

        assert command.to_line() == (
            "ADD_ONION NEW:BEST Flags=DiscardPK,Detach Port=80,8080 Port=443"
        )

    def test_add_onion_requires_port(self):
        with pytest.raises(ValidationError):
            AddOnion(ports=[])

    def test_add_onion_rejects_bad_port(self):
        with pytest.raises(ValidationError):
            AddOnion(ports=[70000])

    def test_add_onion_rejects_unknown_flag(self):
        with pytest.raises(ValidationError):
            AddOnion(ports=[80], flags=["Loud"])

    def test_del_onion(self):
        assert DelOnion(service_id="abcdef").to_line() == "DEL_ONION abcdef"

    def test_hsfetch_with_servers(self):
        command = HSFetch(address="abcdef", servers=["s1", "s2"])

        assert command.to_line() == "HSFETCH abcdef SERVER=s1 SERVER=s2"

    def test_hsfetch_without_servers(self):
        assert HSFetch(address="abcdef", servers=None).to_line() == "HSFETCH abcdef"


# =============================================================================
# Circuits, streams, routers
# =============================================================================


class TestCircuitCommands:
    """Test circuit, stream and router commands."""

    def test_extend_new_circuit(self):
        command = ExtendCircuit(path=["relayA", "relayB"], purpose="general")

        assert command.to_line() == "EXTENDCIRCUIT 0 relayA,relayB purpose=general"

    def test_extend_existing_circuit(self):
        assert ExtendCircuit(circuit_id=12).to_line() == "EXTENDCIRCUIT 12"

    def test_set_circuit_purpose(self):
        command = SetCircuitPurpose(circuit_id=7, purpose="controller")

        assert command.to_line() == "SETCIRCUITPURPOSE 7 purpose=controller"

    def test_set_router_purpose(self):
        command = SetRouterPurpose(router="relayA", purpose="bridge")

        assert command.to_line() == "SETROUTERPURPOSE relayA bridge"

    def test_attach_stream(self):
        command = AttachStream(stream_id=5, circuit_id=7, hop=2)

        assert command.to_line() == "ATTACHSTREAM 5 7 HOP=2"

    def test_attach_stream_without_hop(self):
        assert AttachStream(stream_id=5, circuit_id=0).to_line() == "ATTACHSTREAM 5 0"

    def test_close_circuit(self):
        assert CloseCircuit(circuit_id=7).to_line() == "CLOSECIRCUIT 7"
        assert CloseCircuit(circuit_id=7, if_unused=True).to_line() == "CLOSECIRCUIT 7 IfUnused"

    def test_close_stream_default_reason(self):
        assert CloseStream(stream_id=3).to_line() == "CLOSESTREAM 3 1"

    def test_identifier_rejects_whitespace(self):
        with pytest.raises(ValidationError):
            CloseCircuit(circuit_id="7 8")
