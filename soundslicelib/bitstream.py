"""Byte- and bit-level cursors used by the container parsers.

:class:`ByteCursor` walks a seekable binary stream between two absolute
offsets and refuses to read past the upper bound.  :class:`BitReader`
treats a byte string as a flat MSB-first bitstream and can pull more
bytes from a callback when a field lies beyond what was read so far.
Both raise :class:`~soundslicelib.errors.TruncatedFileError` instead of
returning short data.
"""

from __future__ import annotations

import io
import struct
from typing import BinaryIO, Callable

from .errors import TruncatedFileError


class ByteCursor:
    """Sequential reader over ``stream[start:end]``.

    Parameters
    ----------
    stream : BinaryIO
        Seekable binary stream.  The cursor seeks before every read, so
        several cursors may share one stream.
    start : int
        Absolute offset of the first readable byte.
    end : int | None
        Absolute offset one past the last readable byte.  Defaults to
        the stream length.
    """

    def __init__(self, stream: BinaryIO, start: int = 0, end: int | None = None):
        self._stream = stream
        if end is None:
            stream.seek(0, io.SEEK_END)
            end = stream.tell()
        self.start = start
        self.end = end
        self._pos = start

    @classmethod
    def from_bytes(cls, data: bytes) -> "ByteCursor":
        return cls(io.BytesIO(data), 0, len(data))

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return max(self.end - self._pos, 0)

    def at_end(self) -> bool:
        return self._pos >= self.end

    def seek(self, pos: int) -> None:
        if pos < self.start or pos > self.end:
            raise TruncatedFileError(
                f"Seek to {pos} outside [{self.start}, {self.end}]"
            )
        self._pos = pos

    def skip(self, n: int) -> None:
        self.seek(self._pos + n)

    def sub(self, length: int) -> "ByteCursor":
        """Cursor over the next *length* bytes; advances this cursor past them."""
        if length > self.remaining:
            raise TruncatedFileError(
                f"Need {length} bytes at offset {self._pos}, "
                f"only {self.remaining} remain"
            )
        child = ByteCursor(self._stream, self._pos, self._pos + length)
        self._pos += length
        return child

    def read(self, n: int) -> bytes:
        if n > self.remaining:
            raise TruncatedFileError(
                f"Need {n} bytes at offset {self._pos}, "
                f"only {self.remaining} remain"
            )
        self._stream.seek(self._pos)
        data = self._stream.read(n)
        if len(data) < n:
            raise TruncatedFileError(
                f"Stream ended at offset {self._pos + len(data)}, "
                f"expected {n} bytes"
            )
        self._pos += n
        return data

    def read_upto(self, n: int) -> bytes:
        """Read at most *n* bytes, fewer at the upper bound."""
        return self.read(min(n, self.remaining))

    def u8(self) -> int:
        return self.read(1)[0]

    def u16be(self) -> int:
        return struct.unpack(">H", self.read(2))[0]

    def u32be(self) -> int:
        return struct.unpack(">I", self.read(4))[0]

    def u64be(self) -> int:
        return struct.unpack(">Q", self.read(8))[0]

    def u16le(self) -> int:
        return struct.unpack("<H", self.read(2))[0]

    def u32le(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def fourcc(self) -> str:
        return self.read(4).decode("latin-1")


class BitReader:
    """MSB-first bit cursor over a byte string.

    Parameters
    ----------
    data : bytes
        Initial bytes.
    refill : Callable[[int], bytes] | None
        Called with the number of extra bytes wanted when a read runs
        past the buffered data.  May return fewer bytes; a shortfall
        raises :class:`TruncatedFileError`.
    """

    def __init__(self, data: bytes, refill: Callable[[int], bytes] | None = None):
        self._data = bytearray(data)
        self._refill = refill
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    @property
    def buffered_bits(self) -> int:
        return len(self._data) * 8

    @property
    def remaining_bits(self) -> int:
        return self.buffered_bits - self._pos

    def _ensure(self, bit_end: int) -> None:
        if bit_end <= self.buffered_bits:
            return
        need = (bit_end - self.buffered_bits + 7) // 8
        if self._refill is not None:
            self._data.extend(self._refill(need))
        if bit_end > self.buffered_bits:
            raise TruncatedFileError(
                f"Bit {bit_end - 1} requested, only "
                f"{self.buffered_bits} bits available"
            )

    def bit(self, index: int) -> int:
        """Return the bit at absolute *index* without moving the cursor."""
        self._ensure(index + 1)
        return (self._data[index >> 3] >> (7 - (index & 7))) & 1

    def peek_bits(self, start: int, n: int) -> int:
        self._ensure(start + n)
        value = 0
        for i in range(start, start + n):
            value = (value << 1) | ((self._data[i >> 3] >> (7 - (i & 7))) & 1)
        return value

    def read_bits(self, n: int) -> int:
        value = self.peek_bits(self._pos, n)
        self._pos += n
        return value

    def read_bit(self) -> int:
        return self.read_bits(1)

    def skip(self, n: int) -> None:
        self._ensure(self._pos + n)
        self._pos += n

    def seek(self, index: int) -> None:
        self._ensure(index)
        self._pos = index
