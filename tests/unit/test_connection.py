"""Unit tests for the connection manager."""

import asyncio

import pytest

from torcontrol_runtime import (
    AuthenticationError,
    CommandTimeoutError,
    ConnectionManager,
    ControlConfig,
    MockControlTransport,
    ReplyParseError,
    ResubscriptionError,
    TransportError,
    TransportState,
)


def make_manager(transport: MockControlTransport, **kwargs) -> ConnectionManager:
    config = kwargs.pop("config", None) or ControlConfig()
    return ConnectionManager(config, transport_factory=lambda: transport, **kwargs)


# =============================================================================
# Connect and authenticate
# =============================================================================


class TestConnect:
    """Test opening and authenticating."""

    @pytest.mark.asyncio
    async def test_connect_null_auth(self, transport):
        manager = make_manager(transport)

        await manager.connect()

        assert manager.state == TransportState.READY
        assert manager.is_connected
        assert transport.written_lines == ["AUTHENTICATE"]

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_connect_with_password(self, transport):
        manager = make_manager(transport, config=ControlConfig(password="secret"))

        await manager.connect()

        assert transport.written_lines == ["AUTHENTICATE 736563726574"]

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_connect_with_cookie(self, transport, tmp_path):
        cookie = tmp_path / "control_auth_cookie"
        cookie.write_bytes(b"\x00\x10")
        manager = make_manager(transport, config=ControlConfig(cookie_path=str(cookie)))

        await manager.connect()

        assert transport.written_lines == ["AUTHENTICATE 0010"]

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_connect_when_ready_reuses_transport(self, transport):
        manager = make_manager(transport)

        first = await manager.connect()
        second = await manager.connect()

        assert first is second
        assert transport.written_lines == ["AUTHENTICATE"]

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_open_failure(self):
        manager = make_manager(MockControlTransport(fail_open=True))

        with pytest.raises(TransportError):
            await manager.connect()

        assert manager.state == TransportState.DISCONNECTED
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_rejected_authentication(self):
        transport = MockControlTransport(
            {"AUTHENTICATE": "515 Authentication failed: Password did not match\r\n"}
        )
        manager = make_manager(transport, config=ControlConfig(password="wrong"))

        with pytest.raises(AuthenticationError) as exc_info:
            await manager.connect()

        assert exc_info.value.reply_text == "515 Authentication failed: Password did not match"
        assert str(exc_info.value).startswith("Authentication failed with message: 515")
        assert manager.state == TransportState.DISCONNECTED
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_unreadable_cookie(self, transport, tmp_path):
        config = ControlConfig(cookie_path=str(tmp_path / "missing"))
        manager = make_manager(transport, config=config)

        with pytest.raises(AuthenticationError, match="Cannot read cookie file"):
            await manager.connect()

        assert transport.written_lines == []
        assert manager.state == TransportState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_cancelled_connect_closes_transport(self):
        transport = MockControlTransport({"AUTHENTICATE": None})
        manager = make_manager(transport)

        task = asyncio.create_task(manager.connect())
        for _ in range(20):
            if manager.pending_count:
                break
            await asyncio.sleep(0)
        assert manager.pending_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not transport.is_open
        assert manager.state == TransportState.DISCONNECTED
        assert not manager.is_connected
        assert manager.pending_count == 0

    @pytest.mark.asyncio
    async def test_resubscribes_after_authenticating(self, transport):
        manager = make_manager(transport, subscriptions=lambda: ["CIRC", "BW"])

        await manager.connect()

        assert transport.written_lines == ["AUTHENTICATE", "SETEVENTS CIRC BW"]

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_resubscription_failure_keeps_connection(self):
        """A rejected SETEVENTS is reported but the session stays usable."""
        transport = MockControlTransport({"SETEVENTS BW": '552 Unrecognized event "BW"\r\n'})
        manager = make_manager(transport, subscriptions=lambda: ["BW"])

        with pytest.raises(ResubscriptionError) as exc_info:
            await manager.connect()

        assert exc_info.value.code == 552
        assert manager.state == TransportState.READY
        assert manager.is_connected

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_lenient_resubscription_reports_to_callback(self):
        transport = MockControlTransport({"SETEVENTS BW": '552 Unrecognized event "BW"\r\n'})
        manager = make_manager(transport, subscriptions=lambda: ["BW"])
        errors = []
        manager.on_resubscribe_error(errors.append)

        await manager.connect(strict_resubscribe=False)

        assert [error.code for error in errors] == [552]
        assert manager.state == TransportState.READY

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_connect_without_replay(self, transport):
        manager = make_manager(transport, subscriptions=lambda: ["BW"])

        await manager.connect(replay_events=False)

        assert transport.written_lines == ["AUTHENTICATE"]

        await manager.disconnect(force=True)


# =============================================================================
# Disconnect
# =============================================================================


class TestDisconnect:
    """Test graceful and forced disconnects."""

    @pytest.mark.asyncio
    async def test_graceful_disconnect_sends_quit(self, transport):
        manager = make_manager(transport)
        await manager.connect()

        await manager.disconnect()

        assert transport.written_lines == ["AUTHENTICATE", "QUIT"]
        assert manager.state == TransportState.DISCONNECTED
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_forced_disconnect_skips_quit(self, transport):
        manager = make_manager(transport)
        await manager.connect()

        await manager.disconnect(force=True)

        assert transport.written_lines == ["AUTHENTICATE"]
        assert manager.state == TransportState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected_is_noop(self, transport):
        manager = make_manager(transport)

        await manager.disconnect()

        assert transport.written_lines == []

    @pytest.mark.asyncio
    async def test_ended_callback_fires_once(self, transport):
        manager = make_manager(transport)
        calls = []
        manager.on_ended(lambda: calls.append("ended"))
        await manager.connect()

        await manager.disconnect()

        assert calls == ["ended"]

    @pytest.mark.asyncio
    async def test_ended_callback_unsubscribe(self, transport):
        manager = make_manager(transport)
        calls = []
        unsubscribe = manager.on_ended(lambda: calls.append("ended"))
        unsubscribe()
        await manager.connect()

        await manager.disconnect()

        assert calls == []

    @pytest.mark.asyncio
    async def test_peer_close_fails_pending_exchange(self):
        transport = MockControlTransport({"GETINFO hang": None})
        manager = make_manager(transport)
        await manager.connect()

        task = asyncio.create_task(manager.exchange("GETINFO hang"))
        while manager.pending_count == 0:
            await asyncio.sleep(0)
        transport.close_from_peer()

        with pytest.raises(TransportError):
            await task
        assert manager.state == TransportState.DISCONNECTED
        assert manager.pending_count == 0

    @pytest.mark.asyncio
    async def test_exchange_when_disconnected(self, transport):
        manager = make_manager(transport)

        with pytest.raises(TransportError, match="Not connected"):
            await manager.exchange("GETINFO version")


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    """Test how replies reach their exchanges."""

    @pytest.mark.asyncio
    async def test_events_do_not_consume_reply_slot(self):
        events = []
        transport = MockControlTransport(
            {"GETINFO version": "650 BW 100 200\r\n250-version=0.4.8.10\r\n250 OK\r\n"}
        )
        manager = make_manager(transport, on_event=events.append)
        await manager.connect()

        reply = await manager.exchange("GETINFO version")

        assert events == ["BW 100 200"]
        assert reply.body == "version=0.4.8.10\nOK"

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_timeout_keeps_slot_and_discards_late_reply(self):
        transport = MockControlTransport(
            {"GETINFO slow": None, "GETINFO version": "250-version=0.4.8.10\r\n250 OK\r\n"}
        )
        manager = make_manager(transport)
        await manager.connect()

        with pytest.raises(CommandTimeoutError) as exc_info:
            await manager.exchange("GETINFO slow", timeout=0.01)

        assert isinstance(exc_info.value, TimeoutError)
        assert manager.pending_count == 1

        transport.push("250-slow=late\r\n250 OK\r\n")
        reply = await manager.exchange("GETINFO version")

        assert reply.body == "version=0.4.8.10\nOK"
        assert manager.pending_count == 0

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_malformed_reply_fails_its_exchange(self):
        transport = MockControlTransport({"GETINFO bad": "xyz garbage\r\n"})
        manager = make_manager(transport)
        await manager.connect()

        with pytest.raises(ReplyParseError):
            await manager.exchange("GETINFO bad")

        reply = await manager.exchange("GETINFO other")
        assert reply.body == "OK"

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_malformed_event_does_not_fail_exchange(self):
        events = []
        transport = MockControlTransport(
            {
                "GETINFO version": (
                    "650-CIRC 1 BUILT\r\nbogus\r\n650 OK\r\n250-version=1\r\n250 OK\r\n"
                )
            }
        )
        manager = make_manager(transport, on_event=events.append)
        await manager.connect()

        reply = await manager.exchange("GETINFO version")

        assert reply.body == "version=1\nOK"
        assert manager.pending_count == 0
        assert manager.is_connected

        await manager.disconnect(force=True)

    @pytest.mark.asyncio
    async def test_unsolicited_reply_is_dropped(self, transport):
        manager = make_manager(transport)
        await manager.connect()

        transport.push("250 OK\r\n")
        for _ in range(5):
            await asyncio.sleep(0)
        reply = await manager.exchange("GETINFO version")

        assert reply.body == "version=0.4.8.10\nOK"

        await manager.disconnect(force=True)
