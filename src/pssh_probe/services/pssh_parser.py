import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..utils.utils import to_hex
from .box_scanner import iter_boxes
from .reader import BoundedReader, Buffer, EndOfBuffer

logger = logging.getLogger(__name__)

PSSH_TYPE = b"pssh"
SYSTEM_ID_SIZE = 16
KEY_ID_SIZE = 16

# Well-known DRM system ids, informational only
SYSTEM_NAMES = {
    "edef8ba979d64acea3c827dcd51d21ed": "Widevine",
    "9a04f07998404286ab92e65be0885f95": "PlayReady",
    "94ce86fb07ff4f43adb893d2fa968ca2": "FairPlay",
    "e2719d58a985b3c9781ab030af78d30e": "ClearKey",
    "1077efecc0b24d02ace33c1e52e2fb4b": "Common",
    "5e629af538da4063897797ffbd9902d4": "Marlin",
    "f239e769efa348509c16a903c6932efb": "PrimeTime",
    "adb41c242dbf4a6d958b4457c0d27b95": "Nagra",
}


@dataclass(frozen=True)
class PsshBox:
    """A fully decoded Protection System Specific Header box"""

    version: int
    flags: int
    system_id: str
    key_ids: Tuple[str, ...] = ()
    data_size: int = 0
    start: int = 0
    end: int = 0

    @property
    def system_name(self) -> Optional[str]:
        return system_name(self.system_id)


@dataclass(frozen=True)
class ParseResult:
    """DRM system ids and CENC key ids found in one init data buffer"""

    system_ids: Tuple[str, ...] = ()
    cenc_key_ids: Tuple[str, ...] = ()
    boxes: Tuple[PsshBox, ...] = field(default=(), compare=False)


def system_name(system_id: str) -> Optional[str]:
    """Human readable name of a DRM system id, None when unknown"""
    return SYSTEM_NAMES.get(system_id.lower())


def decode_pssh_box(
    type_tag: bytes, body: Buffer, start: int = 0, end: int = 0
) -> Optional[PsshBox]:
    """
    Decode the body of a single box.

    Returns None when the box is not a PSSH box or when one of its fields
    runs past the end of its own body.

    Args:
        type_tag: 4-byte box type
        body: Box payload, header excluded
        start: Offset of the box in the scanned buffer (informational)
        end: Offset one past the box in the scanned buffer (informational)
    """
    if type_tag != PSSH_TYPE:
        return None

    reader = BoundedReader(body)
    try:
        version = reader.read_uint8()
        flags = int.from_bytes(reader.read_bytes(3), "big")
        system_id = to_hex(reader.read_bytes(SYSTEM_ID_SIZE))

        key_ids: List[str] = []
        if version >= 1:
            key_id_count = reader.read_uint32()
            if key_id_count * KEY_ID_SIZE > reader.remaining():
                raise EndOfBuffer(
                    f"{key_id_count} key ids do not fit in {reader.remaining()} bytes"
                )
            for _ in range(key_id_count):
                key_ids.append(to_hex(reader.read_bytes(KEY_ID_SIZE)))

        data_size = reader.read_uint32()
        reader.skip(data_size)
    except EndOfBuffer as e:
        logger.debug(f"Malformed PSSH box at offset {start}, skipping: {e}")
        return None

    return PsshBox(
        version=version,
        flags=flags,
        system_id=system_id,
        key_ids=tuple(key_ids),
        data_size=data_size,
        start=start,
        end=end,
    )


def parse(data: Buffer) -> ParseResult:
    """
    Extract system ids and CENC key ids from concatenated PSSH boxes.

    Never raises on malformed input: unknown boxes are skipped, a truncated
    box ends the scan, and a PSSH box with an inconsistent body is dropped
    while scanning continues with the next box.

    Args:
        data: Init data, zero or more concatenated ISO-BMFF boxes

    Returns:
        ParseResult with identifiers in buffer order
    """
    system_ids: List[str] = []
    cenc_key_ids: List[str] = []
    boxes: List[PsshBox] = []

    for box in iter_boxes(data):
        pssh = decode_pssh_box(box.type_tag, box.body, box.start, box.end)
        if pssh is None:
            if box.type_tag != PSSH_TYPE:
                logger.debug(f"Skipping non-PSSH box '{box.box_type}' at offset {box.start}")
            continue

        system_ids.append(pssh.system_id)
        cenc_key_ids.extend(pssh.key_ids)
        boxes.append(pssh)

    return ParseResult(
        system_ids=tuple(system_ids),
        cenc_key_ids=tuple(cenc_key_ids),
        boxes=tuple(boxes),
    )
