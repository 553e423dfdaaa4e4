import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from .reader import BoundedReader, Buffer, EndOfBuffer

logger = logging.getLogger(__name__)

BOX_HEADER_SIZE = 8


@dataclass(frozen=True)
class Box:
    """A top-level box: type tag, body view and its [start, end) offsets"""

    type_tag: bytes
    body: memoryview
    start: int
    end: int

    @property
    def box_type(self) -> str:
        return self.type_tag.decode("ascii", errors="replace")


def iter_boxes(data: Buffer, start: int = 0, end: Optional[int] = None) -> Iterator[Box]:
    """
    Yield each complete box found in data[start:end], in order.

    Stops silently at the first box whose header or body does not fit in
    the remaining bytes. A declared size of 0 extends the box to `end`.
    """
    reader = BoundedReader(data, start, end)

    while reader.remaining() >= BOX_HEADER_SIZE:
        box_start = reader.position
        declared_size = reader.read_uint32()
        type_tag = reader.read_bytes(4)

        if declared_size == 0:
            body_length = reader.remaining()
        elif declared_size < BOX_HEADER_SIZE:
            logger.debug(
                f"Invalid box size {declared_size} for {type_tag!r} at offset {box_start}, "
                f"stopping scan"
            )
            return
        else:
            body_length = declared_size - BOX_HEADER_SIZE

        body_start = reader.position
        try:
            reader.skip(body_length)
        except EndOfBuffer:
            logger.debug(
                f"Box {type_tag!r} at offset {box_start} extends beyond data "
                f"({body_length} > {reader.remaining()}), stopping scan"
            )
            return

        yield Box(
            type_tag=type_tag,
            body=reader.data[body_start : reader.position],
            start=box_start,
            end=reader.position,
        )
