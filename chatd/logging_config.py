"""Logging setup shared by the ``chatd`` server and the ``chatc`` client."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig
from .util import expand_path

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Marks handlers installed here so a second call replaces only those.
_HANDLER_TAG = "_chatd_handler"


def parse_level(value: Any, default: int) -> int:
    """Level name (any case, ``WARN`` allowed) or number; ``default`` otherwise."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"
    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level
    try:
        return int(text)
    except ValueError:
        return default


def resolve_log_file(cfg: HubRuntimeConfig, override_file: str | None = None) -> Path | None:
    """The log file to write, or None for console only.

    An override, even an empty one, wins over the config; blank means no file.
    """
    value = override_file if override_file is not None else cfg.log_file
    if value is None or not str(value).strip():
        return None
    return Path(expand_path(str(value)))


def _open_log_file(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Create owner-only before the handler opens it for append.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    os.close(fd)
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> int:
    """Install chatd's handlers on the root logger and return the level set.

    Console output goes to stderr so it never interleaves with the operator
    prompt on stdout. Calling again swaps out the handlers installed by the
    previous call and leaves any others alone.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler(sys.stderr))

    log_file = resolve_log_file(cfg, override_file)
    if log_file is not None:
        handlers.append(_open_log_file(log_file))

    datefmt = cfg.log_datefmt.strip() if cfg.log_datefmt else None
    formatter = logging.Formatter(
        fmt=(cfg.log_format or "").strip() or DEFAULT_FORMAT,
        datefmt=datefmt or None,
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, _HANDLER_TAG, False):
            root.removeHandler(h)
            h.close()

    for h in handlers:
        h.setFormatter(formatter)
        setattr(h, _HANDLER_TAG, True)
        root.addHandler(h)

    root.setLevel(level)
    logging.captureWarnings(True)
    return level
