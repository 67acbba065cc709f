from __future__ import annotations

import json
import socket
from enum import Enum

from .constants import MAX_FRAME_BYTES, MESSAGE_SEPARATOR, RECV_CHUNK_BYTES


class FrameTooLarge(ValueError):
    pass


class DecodeOutcome(Enum):
    END_OF_STREAM = "end_of_stream"
    MALFORMED = "malformed"


def encode(obj) -> bytes:
    # ASCII-escaped JSON: no raw NUL can appear in the text and lone
    # surrogates from a peer still encode.
    text = json.dumps(obj, separators=(",", ":"))
    return text.encode("utf-8") + MESSAGE_SEPARATOR


def decode(b: bytes):
    return json.loads(b.decode("utf-8", "strict"))


class FrameReader:
    """Splits a socket byte stream into NUL-terminated frames.

    A single recv may carry several frames or only part of one; bytes after
    the last separator are buffered until the rest arrives. At end of stream
    any non-blank remainder is returned as a final frame.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        recv_chunk_bytes: int = RECV_CHUNK_BYTES,
    ) -> None:
        self.sock = sock
        self.max_frame_bytes = int(max_frame_bytes)
        self.recv_chunk_bytes = int(recv_chunk_bytes)
        self._buf = bytearray()
        self._eof = False
        self._discarding = False

    def read_frame(self) -> bytes | None:
        """Return the next frame body, or None once the stream has ended.

        Raises FrameTooLarge once for a run longer than max_frame_bytes; the
        rest of that run up to the next separator is dropped.
        """
        while True:
            idx = self._buf.find(MESSAGE_SEPARATOR)
            if idx >= 0:
                frame = bytes(self._buf[:idx])
                del self._buf[: idx + 1]
                if self._discarding:
                    self._discarding = False
                    continue
                if self.max_frame_bytes > 0 and idx > self.max_frame_bytes:
                    raise FrameTooLarge(
                        f"frame exceeds {self.max_frame_bytes} bytes ({idx} received)"
                    )
                return frame

            if self._discarding:
                self._buf.clear()
            elif self.max_frame_bytes > 0 and len(self._buf) > self.max_frame_bytes:
                size = len(self._buf)
                self._buf.clear()
                self._discarding = True
                raise FrameTooLarge(
                    f"frame exceeds {self.max_frame_bytes} bytes ({size} buffered)"
                )

            if self._eof:
                if self._discarding or not bytes(self._buf).strip():
                    self._buf.clear()
                    return None
                frame = bytes(self._buf)
                self._buf.clear()
                return frame

            chunk = self.sock.recv(self.recv_chunk_bytes)
            if not chunk:
                self._eof = True
                continue
            self._buf += chunk
