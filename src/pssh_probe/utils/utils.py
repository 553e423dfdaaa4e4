import base64
import binascii
from typing import Union


def decode_base64(encoded: str) -> bytes:
    """
    Decode base64 init data, handling missing padding

    Accepts both the standard and the URL-safe alphabet.

    Args:
        encoded: Base64 encoded string (with or without padding)

    Returns:
        Decoded bytes

    Raises:
        ValueError: If base64 decoding fails
    """
    cleaned = "".join(encoded.split())
    try:
        # Add padding if needed
        padding_needed = 4 - len(cleaned) % 4
        if padding_needed != 4:  # Only add padding if needed
            cleaned += "=" * padding_needed

        if "-" in cleaned or "_" in cleaned:
            return base64.b64decode(cleaned.encode("ascii"), altchars=b"-_", validate=True)
        return base64.b64decode(cleaned.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Failed to decode base64 data: {e}")


def encode_base64(raw: Union[bytes, bytearray, memoryview]) -> str:
    return base64.b64encode(bytes(raw)).decode("ascii")


def to_hex(raw: Union[bytes, bytearray, memoryview]) -> str:
    """Render raw bytes as a lower-case hex string"""
    return binascii.hexlify(bytes(raw)).decode("ascii")


def normalize_hex_id(value: Union[str, bytes]) -> bytes:
    """
    Convert a 16-byte identifier to raw bytes

    Args:
        value: Raw 16 bytes, or 32 hex characters (UUID dashes and braces allowed)

    Returns:
        The identifier as 16 raw bytes

    Raises:
        ValueError: If the value is not a valid 16-byte identifier
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        cleaned = value.strip().strip("{}").replace("-", "")
        try:
            raw = bytes.fromhex(cleaned)
        except ValueError:
            raise ValueError(f"Identifier must be valid hexadecimal, got {value!r}")

    if len(raw) != 16:
        raise ValueError(f"Identifier must be exactly 16 bytes, got {len(raw)}")
    return raw
