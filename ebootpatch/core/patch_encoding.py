"""
Byte encoding of typed patch values.

encode_patch() is a pure function from (PatchType, PatchValue) to the exact
bytes written into the image.
"""

import struct

from ..formats.patch_data import (
    FloatValue,
    IntegerValue,
    PatchType,
    PatchValue,
    TextValue,
)

# struct format character per integer width
_INT_FORMATS = {1: "B", 2: "H", 4: "I", 8: "Q"}
_FLOAT_FORMATS = {4: "f", 8: "d"}


class EncodingError(ValueError):
    """Raised when a value cannot be encoded as the requested patch type."""

    pass


def encode_patch(patch_type: PatchType, value: PatchValue) -> bytes:
    """
    Encode a patch value to bytes.

    Integers are truncated to the type width (two's complement for negative
    values). Float types are written as IEEE-754. Utf8 is written as raw
    UTF-8 with no terminator or length prefix.

    Args:
        patch_type: Patch type (any type except Load)
        value: Value matching the type's kind

    Returns:
        Encoded bytes

    Raises:
        EncodingError: If the type cannot be written or the value does not
            match the type
    """
    if patch_type is PatchType.LOAD:
        raise EncodingError("Load patches must be resolved before writing")

    if patch_type.is_text:
        if not isinstance(value, TextValue):
            raise EncodingError(f"{patch_type} requires a text value, got {value!r}")
        return value.value.encode("utf-8")

    order = ">" if patch_type.big_endian else "<"
    width = patch_type.width

    if patch_type.is_float:
        if isinstance(value, FloatValue):
            number = value.value
        elif isinstance(value, IntegerValue):
            number = float(value.value)
        else:
            raise EncodingError(f"{patch_type} requires a number, got {value!r}")
        try:
            return struct.pack(order + _FLOAT_FORMATS[width], number)
        except (struct.error, OverflowError) as e:
            raise EncodingError(f"{number} does not fit in {patch_type}: {e}") from e

    if not isinstance(value, IntegerValue):
        raise EncodingError(f"{patch_type} requires an integer, got {value!r}")

    mask = (1 << (width * 8)) - 1
    return struct.pack(order + _INT_FORMATS[width], value.value & mask)
