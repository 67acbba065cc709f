from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import (
    DEFAULT_PORT,
    DISPLAY_NAME_MAX_CHARS,
    MAX_FRAME_BYTES,
    RECV_CHUNK_BYTES,
    ROOM_NAME_MAX_CHARS,
)


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    host: str = ""
    port: int = DEFAULT_PORT
    backlog: int = 16
    motd: str | None = None
    console: bool = True
    display_name_max_chars: int = DISPLAY_NAME_MAX_CHARS
    max_room_name_len: int = ROOM_NAME_MAX_CHARS
    max_frame_bytes: int = MAX_FRAME_BYTES
    recv_chunk_bytes: int = RECV_CHUNK_BYTES
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_OPTIONAL_STRINGS = ("motd", "log_file", "log_datefmt")
_INT_KEYS = (
    "port",
    "backlog",
    "display_name_max_chars",
    "max_room_name_len",
    "max_frame_bytes",
    "recv_chunk_bytes",
)


def load_toml(path: str) -> dict[str, Any]:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict[str, Any]) -> HubRuntimeConfig:
    """Overlay a parsed TOML document onto ``base``.

    Keys may sit at the top level or under ``[server]``; ``[logging]`` keys map
    onto the ``log_*`` fields. Unknown keys are ignored.
    """
    server = data.get("server")
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped = {_LOGGING_KEYS[k]: v for k, v in log_table.items() if k in _LOGGING_KEYS}
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STRINGS:
        if key in updates and updates[key] == "":
            updates[key] = None

    for key in _INT_KEYS:
        if key in updates:
            try:
                updates[key] = int(updates[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"config key {key} must be an integer") from e

    port = updates.get("port")
    if port is not None and not 1 <= port <= 65535:
        raise ValueError("config key port must be between 1 and 65535")

    return replace(base, **updates) if updates else base
