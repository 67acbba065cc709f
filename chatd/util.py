from __future__ import annotations

import os
import re

from .errors import InvalidName, InvalidRoomName

_WHITESPACE = re.compile(r"\s")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_display_name(value, *, max_chars: int = 0) -> str:
    """Return ``value`` if it is usable as a display name, else raise InvalidName.

    Names are compared exactly (case-sensitive); no trimming is applied so a
    name with surrounding whitespace is refused rather than silently changed.
    """
    if not isinstance(value, str) or not value or _WHITESPACE.search(value):
        raise InvalidName(
            "Invalid display name. Display names must be non-empty and contain "
            "no whitespace."
        )

    if max_chars > 0 and len(value) > max_chars:
        raise InvalidName(
            f"Invalid display name. Display names must be at most {max_chars} characters."
        )

    # NUL is the frame separator.
    if "\x00" in value:
        raise InvalidName("Invalid display name. Display names must not contain NUL.")
    try:
        value.encode("utf-8", "strict")
    except UnicodeError:
        raise InvalidName(
            "Invalid display name. Display names must be valid UTF-8."
        ) from None

    return value


def normalize_room_name(value, *, max_chars: int = 0) -> str:
    if not isinstance(value, str) or not value or _WHITESPACE.search(value):
        raise InvalidRoomName(
            "Invalid room name. Room names must be non-empty and contain no whitespace."
        )

    if max_chars > 0 and len(value) > max_chars:
        raise InvalidRoomName(
            f"Invalid room name. Room names must be at most {max_chars} characters."
        )

    if "\x00" in value:
        raise InvalidRoomName("Invalid room name. Room names must not contain NUL.")

    return value
