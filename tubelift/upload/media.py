from __future__ import annotations
"""
Media sources for chunked uploads.

The raw source only needs read(max_length); seek/tell and a known length are
used when available. MediaSource adds ranged reads so a chunk can be sent
again after a failed attempt.
"""

import io
import os
from typing import BinaryIO, Optional

from tubelift.errors import StorageError


class MediaSource:
    """
    Sequential byte source with replay of unconfirmed bytes.

    Bytes are buffered from the lowest offset that may still be requested;
    asking for an offset moves that floor forward and frees the buffer below
    it. Seekable streams skip the buffer and seek directly.
    """

    def __init__(self, stream: BinaryIO, length: Optional[int] = None, name: str = "<stream>"):
        self.stream = stream
        self.name = name
        self._length = length
        self._seekable = _is_seekable(stream)
        self._origin = stream.tell() if self._seekable else 0
        self._buffer = b""
        self._buffer_start = 0
        self._exhausted = False

    @classmethod
    def from_path(cls, path: str) -> "MediaSource":
        try:
            size = os.path.getsize(path)
            stream = open(path, "rb")
        except OSError as e:
            raise StorageError(f"Cannot open media file {path}: {e}") from e
        return cls(stream, length=size, name=path)

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "<bytes>") -> "MediaSource":
        return cls(io.BytesIO(data), length=len(data), name=name)

    def length(self) -> Optional[int]:
        return self._length

    @property
    def seekable(self) -> bool:
        return self._seekable

    def read_range(self, offset: int, length: int) -> bytes:
        """
        Return up to `length` bytes starting at `offset`.
        A shorter result means the source ended.
        """
        if length == 0:
            return b""
        if self._seekable:
            return self._read_seekable(offset, length)
        return self._read_buffered(offset, length)

    def _read_seekable(self, offset: int, length: int) -> bytes:
        try:
            self.stream.seek(self._origin + offset)
            return _read_fully(self.stream, length)
        except OSError as e:
            raise StorageError(f"Cannot read {self.name} at offset {offset}: {e}") from e

    def _read_buffered(self, offset: int, length: int) -> bytes:
        if offset < self._buffer_start:
            raise StorageError(
                f"Cannot rewind {self.name} to offset {offset}; "
                f"bytes before {self._buffer_start} were already released"
            )

        buffered_end = self._buffer_start + len(self._buffer)
        if offset > buffered_end:
            # Skip forward; everything up to offset is confirmed elsewhere
            gap = offset - buffered_end
            skipped = self._pull(gap)
            self._buffer = b""
            self._buffer_start = buffered_end + len(skipped)
            if len(skipped) < gap:
                return b""

        # Release confirmed bytes below offset
        self._buffer = self._buffer[offset - self._buffer_start:]
        self._buffer_start = offset

        missing = length - len(self._buffer)
        if missing > 0:
            self._buffer += self._pull(missing)
        return self._buffer[:length]

    def _pull(self, n: int) -> bytes:
        if self._exhausted:
            return b""
        try:
            data = _read_fully(self.stream, n)
        except OSError as e:
            raise StorageError(f"Cannot read {self.name}: {e}") from e
        if len(data) < n:
            self._exhausted = True
        return data

    def read_all(self) -> bytes:
        """Whole payload from offset 0, for single-request uploads"""
        if self._length is not None:
            return self.read_range(0, self._length)
        parts = []
        offset = 0
        while True:
            data = self.read_range(offset, 1024 * 1024)
            if not data:
                break
            parts.append(data)
            offset += len(data)
        return b"".join(parts)

    def rewind(self) -> None:
        """Start over from offset 0 (seekable sources only)"""
        if not self._seekable:
            raise StorageError(f"{self.name} is not seekable and cannot be restarted")
        self._buffer = b""
        self._buffer_start = 0

    def close(self) -> None:
        self.stream.close()


def _is_seekable(stream) -> bool:
    try:
        if hasattr(stream, "seekable") and not stream.seekable():
            return False
        stream.tell()
        return hasattr(stream, "seek")
    except (OSError, AttributeError, ValueError):
        return False


def _read_fully(stream, n: int) -> bytes:
    """read() may return short on pipes and sockets; loop until n bytes or EOF"""
    parts = []
    remaining = n
    while remaining > 0:
        data = stream.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)
