import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from .crypto import OAEP_HASHES
from .framing import MAX_BLOB_SIZE, MAX_FRAME_SIZE
from .session import DEFAULT_EXIT_COMMAND

"""
config.py — runtime settings for one process.

Defaults come first, then E2EE_* environment variables, then whatever the
command line says (run.py applies those with Config.override()).
"""

DEFAULT_PORT = 12345
DEFAULT_SERVER_HOST = "0.0.0.0"
DEFAULT_CLIENT_HOST = "127.0.0.1"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (1/0, true/false), got {value!r}")


def _parse_int(name: str, value: str, minimum: int = 0, maximum: Optional[int] = None) -> int:
    try:
        n = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if n < minimum or (maximum is not None and n > maximum):
        raise ValueError(f"{name} out of range: {n}")
    return n


@dataclass(frozen=True)
class Config:
    host: Optional[str] = None
    port: int = DEFAULT_PORT
    exit_command: str = DEFAULT_EXIT_COMMAND
    oaep_hash: str = "sha1"
    stop_on_decrypt_error: bool = True
    max_frame_size: int = MAX_FRAME_SIZE
    max_key_size: int = MAX_BLOB_SIZE
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not 0 <= int(self.port) <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.oaep_hash.lower() not in OAEP_HASHES:
            raise ValueError(f"oaep_hash must be one of {sorted(OAEP_HASHES)}, got {self.oaep_hash!r}")
        if not self.exit_command:
            raise ValueError("exit_command must not be empty")
        if self.max_frame_size <= 0 or self.max_key_size <= 0:
            raise ValueError("size limits must be positive")

    def server_host(self) -> str:
        return self.host or DEFAULT_SERVER_HOST

    def client_host(self) -> str:
        return self.host or DEFAULT_CLIENT_HOST

    def override(self, **changes: Any) -> "Config":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("E2EE_HOST"):
            values["host"] = env["E2EE_HOST"]
        if env.get("E2EE_PORT"):
            values["port"] = _parse_int("E2EE_PORT", env["E2EE_PORT"], 0, 65535)
        if env.get("E2EE_EXIT_COMMAND"):
            values["exit_command"] = env["E2EE_EXIT_COMMAND"]
        if env.get("E2EE_OAEP_HASH"):
            values["oaep_hash"] = env["E2EE_OAEP_HASH"].strip().lower()
        if env.get("E2EE_STOP_ON_DECRYPT_ERROR"):
            values["stop_on_decrypt_error"] = _parse_bool(
                "E2EE_STOP_ON_DECRYPT_ERROR", env["E2EE_STOP_ON_DECRYPT_ERROR"]
            )
        if env.get("E2EE_MAX_FRAME_SIZE"):
            values["max_frame_size"] = _parse_int("E2EE_MAX_FRAME_SIZE", env["E2EE_MAX_FRAME_SIZE"], 1)
        if env.get("E2EE_MAX_KEY_SIZE"):
            values["max_key_size"] = _parse_int("E2EE_MAX_KEY_SIZE", env["E2EE_MAX_KEY_SIZE"], 1)
        if env.get("E2EE_LOG_LEVEL"):
            values["log_level"] = env["E2EE_LOG_LEVEL"].strip().upper()
        return cls(**values)
