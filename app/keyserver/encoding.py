"""Byte-level encodings shared by the request codecs.

- Strict base64 and 0x-hex decoding with caller-chosen error types
- BCS (Binary Canonical Serialization) of byte vectors, the format the
  client SDK uses for the signed request message
"""

import base64
import binascii
from typing import Optional, Type

from eth_utils import decode_hex

from .exceptions import KeyServerError, RequestFormatError


def decode_base64(
    value: str,
    what: str,
    error: Type[KeyServerError] = RequestFormatError,
) -> bytes:
    """Decode standard base64, rejecting non-alphabet characters."""
    if not isinstance(value, str):
        raise error(f"{what} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise error(f"{what} is not valid base64: {e}")


def decode_0x_hex(
    value: str,
    what: str,
    length: Optional[int] = None,
    error: Type[KeyServerError] = RequestFormatError,
) -> bytes:
    """Decode a 0x-prefixed hex string, optionally enforcing a byte length."""
    if not isinstance(value, str) or not value[:2].lower() == "0x":
        raise error(f"{what} must be a 0x-prefixed hex string")
    try:
        raw = decode_hex(value)
    except (binascii.Error, ValueError) as e:
        raise error(f"{what} is not valid hex: {e}")
    if length is not None and len(raw) != length:
        raise error(f"{what} must be {length} bytes, got {len(raw)}")
    return raw


def decode_binary(value: str, what: str, length: Optional[int] = None) -> bytes:
    """Decode a binary request field given as 0x-hex or base64."""
    if isinstance(value, str) and value[:2].lower() == "0x":
        raw = decode_0x_hex(value, what)
    else:
        raw = decode_base64(value, what)
    if length is not None and len(raw) != length:
        raise RequestFormatError(f"{what} must be {length} bytes, got {len(raw)}")
    return raw


def check_json_shape(
    raw: bytes,
    what: str,
    max_bytes: int,
    max_depth: int,
    error: Type[KeyServerError] = RequestFormatError,
) -> None:
    """Reject JSON text that is too large or nested too deeply to decode.

    Runs before json.loads: eth_account raises the interpreter recursion
    limit far above what the C decoder's stack can hold, so deep nesting
    must never reach the decoder. Brackets inside strings are skipped.
    Does not validate the JSON itself.
    """
    if len(raw) > max_bytes:
        raise error(f"{what} exceeds {max_bytes} bytes")
    depth = 0
    in_string = False
    escaped = False
    for byte in raw:
        if in_string:
            if escaped:
                escaped = False
            elif byte == 0x5C:  # backslash
                escaped = True
            elif byte == 0x22:  # quote
                in_string = False
        elif byte == 0x22:
            in_string = True
        elif byte in (0x5B, 0x7B):  # [ {
            depth += 1
            if depth > max_depth:
                raise error(f"{what} is nested deeper than {max_depth} levels")
        elif byte in (0x5D, 0x7D):  # ] }
            depth -= 1


def uleb128(n: int) -> bytes:
    """Unsigned LEB128, as used by BCS for sequence lengths."""
    if n < 0:
        raise ValueError("uleb128 requires a non-negative integer")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def bcs_bytes(data: bytes) -> bytes:
    """BCS encoding of vector<u8>: uleb128 length prefix then raw bytes."""
    return uleb128(len(data)) + data
