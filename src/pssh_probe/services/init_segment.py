import logging
import struct
from typing import Iterator, List

from .box_scanner import Box, iter_boxes
from .pssh_parser import PSSH_TYPE
from .reader import Buffer

logger = logging.getLogger(__name__)

# Real files nest a handful of levels (moof/traf, moov/trak/mdia/minf/stbl/...)
MAX_DEPTH = 16

# Boxes whose payload is a plain sequence of child boxes
CONTAINER_BOXES = {
    b"moov",
    b"moof",
    b"trak",
    b"mdia",
    b"minf",
    b"stbl",
    b"traf",
    b"mvex",
    b"sinf",
    b"schi",
    b"dinf",
    b"edts",
    b"udta",
}


def find_pssh_boxes(segment: Buffer) -> List[bytes]:
    """
    Collect every PSSH box of an MP4 segment, header included, in file order.

    Descends into container boxes up to MAX_DEPTH levels; other boxes and
    deeper containers are skipped unread. The returned boxes can be
    concatenated and handed to `parse`.
    """
    data = memoryview(segment)
    found: List[bytes] = []
    # One box iterator per open container, innermost last
    stack: List[Iterator[Box]] = [iter_boxes(data)]

    while stack:
        box = next(stack[-1], None)
        if box is None:
            stack.pop()
            continue

        if box.type_tag == PSSH_TYPE:
            raw = data[box.start : box.end].tobytes()
            if raw[:4] == b"\x00\x00\x00\x00":
                # size 0 is only valid for the last box, pin it so boxes stay concatenable
                raw = struct.pack(">I", len(raw)) + raw[4:]
            found.append(raw)
        elif box.type_tag in CONTAINER_BOXES:
            if len(stack) > MAX_DEPTH:
                logger.debug(
                    f"Not descending into '{box.box_type}' at {box.start}: "
                    f"nesting exceeds {MAX_DEPTH} levels"
                )
                continue
            stack.append(iter_boxes(data, box.end - len(box.body), box.end))

    logger.debug(f"Found {len(found)} PSSH box(es) in {len(segment)} byte segment")
    return found
