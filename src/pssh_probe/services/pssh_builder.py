import struct
from typing import Optional, Sequence, Union

from ..utils.utils import normalize_hex_id

Identifier = Union[str, bytes]


def build_pssh_box(
    system_id: Identifier,
    key_ids: Optional[Sequence[Identifier]] = None,
    data: bytes = b"",
    version: Optional[int] = None,
    flags: int = 0,
) -> bytes:
    """
    Serialize a PSSH box, header included

    Args:
        system_id: DRM system id (16 raw bytes or 32 hex chars)
        key_ids: Key ids for a version 1 box
        data: Opaque system-specific payload
        version: Box version (default: 1 if key ids are given, else 0)
        flags: 24-bit box flags

    Returns:
        The encoded box

    Raises:
        ValueError: If an identifier is malformed or key ids are given for version 0
    """
    key_ids = list(key_ids or [])
    if version is None:
        version = 1 if key_ids else 0

    if not 0 <= version <= 0xFF:
        raise ValueError(f"Version must fit in one byte, got {version}")
    if not 0 <= flags <= 0xFFFFFF:
        raise ValueError(f"Flags must fit in 24 bits, got {flags:#x}")
    if version == 0 and key_ids:
        raise ValueError("Key ids require a version 1 PSSH box")

    body = struct.pack(">I", (version << 24) | flags)
    body += normalize_hex_id(system_id)
    if version >= 1:
        body += struct.pack(">I", len(key_ids))
        for key_id in key_ids:
            body += normalize_hex_id(key_id)
    body += struct.pack(">I", len(data)) + bytes(data)

    return struct.pack(">I", len(body) + 8) + b"pssh" + body
