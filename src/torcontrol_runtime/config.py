"""Connection configuration for a control session.

Environment Variables (read by ControlConfig.from_env):
    TORCONTROL_HOST - Control port host (default: localhost)
    TORCONTROL_PORT - Control port (default: 9051)
    TORCONTROL_PATH - Control socket path (replaces host/port)
    TORCONTROL_PASSWORD - Password for AUTHENTICATE
    TORCONTROL_COOKIE - Path to the authentication cookie file
    TORCONTROL_PERSISTENT - Keep the connection open between commands (default: false)
    TORCONTROL_TIMEOUT - Default command timeout in seconds (default: 30)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9051
DEFAULT_TIMEOUT = 30.0

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class ControlConfig:
    """Endpoint, credentials and lifecycle settings for one session.

    The endpoint is either ``host``/``port`` or a local socket ``path``,
    never both. The secret is either a ``password`` or a ``cookie_path``;
    with neither, an empty AUTHENTICATE is sent (null authentication).
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str | None = None

    password: str | None = None
    cookie_path: str | None = None

    # Keep the transport open between commands instead of reconnecting per command
    persistent: bool = False
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if self.path and (self.host != DEFAULT_HOST or self.port != DEFAULT_PORT):
            raise ValueError("path and host/port are mutually exclusive")
        if self.password is not None and self.cookie_path:
            raise ValueError("password and cookie_path are mutually exclusive")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")

    @property
    def endpoint(self) -> str:
        """Human readable endpoint, used in log and error messages."""
        if self.path:
            return self.path
        return f"{self.host}:{self.port}"

    def secret_hex(self) -> str:
        """Return the hex-encoded authentication secret.

        The cookie file is read on every call so a daemon restart that
        rotates the cookie is picked up on reconnect.

        Raises:
            OSError: If the cookie file cannot be read
        """
        if self.cookie_path:
            return Path(self.cookie_path).read_bytes().hex()
        if self.password:
            return self.password.encode("utf-8").hex()
        return ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ControlConfig:
        """Build a config from TORCONTROL_* environment variables."""
        env = os.environ if environ is None else environ

        kwargs: dict = {}
        if env.get("TORCONTROL_PATH"):
            kwargs["path"] = env["TORCONTROL_PATH"]
        if env.get("TORCONTROL_HOST"):
            kwargs["host"] = env["TORCONTROL_HOST"]
        if env.get("TORCONTROL_PORT"):
            kwargs["port"] = int(env["TORCONTROL_PORT"])
        if "TORCONTROL_PASSWORD" in env:
            kwargs["password"] = env["TORCONTROL_PASSWORD"]
        if env.get("TORCONTROL_COOKIE"):
            kwargs["cookie_path"] = env["TORCONTROL_COOKIE"]
        if env.get("TORCONTROL_TIMEOUT"):
            kwargs["timeout"] = float(env["TORCONTROL_TIMEOUT"])
        kwargs["persistent"] = env.get("TORCONTROL_PERSISTENT", "").lower() in _TRUTHY

        return cls(**kwargs)
