import struct
from typing import Optional, Union

Buffer = Union[bytes, bytearray, memoryview]


class EndOfBuffer(Exception):
    """Raised when a read needs more bytes than the reader has left"""


class BoundedReader:
    """Big-endian cursor over an immutable byte buffer"""

    def __init__(self, data: Buffer, start: int = 0, end: Optional[int] = None):
        """
        Args:
            data: Buffer to read from (never modified)
            start: Offset of the first readable byte
            end: Offset one past the last readable byte (default: end of data)
        """
        self.data = memoryview(data)
        self.end = len(self.data) if end is None else min(end, len(self.data))
        self.position = start

    def remaining(self) -> int:
        return max(self.end - self.position, 0)

    def _require(self, count: int):
        if count < 0 or count > self.remaining():
            raise EndOfBuffer(
                f"Need {count} bytes at offset {self.position}, {self.remaining()} left"
            )

    def read_uint8(self) -> int:
        self._require(1)
        value = self.data[self.position]
        self.position += 1
        return value

    def read_uint32(self) -> int:
        self._require(4)
        value = struct.unpack_from(">I", self.data, self.position)[0]
        self.position += 4
        return value

    def read_bytes(self, count: int) -> bytes:
        """Read exactly `count` bytes, cursor untouched on failure"""
        self._require(count)
        value = self.data[self.position : self.position + count].tobytes()
        self.position += count
        return value

    def skip(self, count: int):
        self._require(count)
        self.position += count
