"""
EBOOT Patcher - Value Parsing

Parses the textual tokens of a patch file (offsets, values, address deltas)
into typed patch values.

Accepted numeric forms:
- hexadecimal: "0x1F", "-0x10"
- decimal integer: "42", "-7"
- decimal float: "1.5", "-0.25", "3.", ".5"
"""

import re
from enum import Enum

from .patch_data import (
    ADDRESS_MASK,
    FloatValue,
    IntegerValue,
    PatchType,
    PatchValue,
    SignedValue,
    TextValue,
    UnsignedValue,
)

HEX_PREFIX = "0x"
MAX_HEX_DIGITS = 16

_HEX_DIGITS = re.compile(r"[0-9A-Fa-f]+")
_DECIMAL = re.compile(r"([0-9]+)(\.[0-9]*)?|\.[0-9]+")


class ParseErrorKind(Enum):
    EMPTY = "empty"
    INVALID_HEX = "invalid hex"
    INVALID_NUMBER = "invalid number"


class ParseError(ValueError):
    """Raised when a token cannot be parsed into a patch value."""

    def __init__(self, reason: ParseErrorKind, token: str):
        self.reason = reason
        self.token = token
        super().__init__(f"{reason.value} token: {token!r}")


def parse_value(token: str) -> PatchValue:
    """
    Parse a numeric token.

    Args:
        token: Token text from the patch file

    Returns:
        UnsignedValue, SignedValue or FloatValue

    Raises:
        ParseError: If the token is empty or not a valid number

    Example:
        >>> parse_value("0x10")
        UnsignedValue(value=16)
        >>> parse_value("-1.5")
        FloatValue(value=-1.5)
    """
    if token is None or not token.strip():
        raise ParseError(ParseErrorKind.EMPTY, token or "")

    text = token.strip()
    negative = text.startswith("-")
    unsigned_text = text[1:] if negative else text

    if unsigned_text.startswith(HEX_PREFIX):
        digits = unsigned_text[len(HEX_PREFIX):]
        if not _HEX_DIGITS.fullmatch(digits) or len(digits.lstrip("0")) > MAX_HEX_DIGITS:
            raise ParseError(ParseErrorKind.INVALID_HEX, token)
        return _signed_integer(int(digits, 16), negative)

    match = _DECIMAL.fullmatch(unsigned_text)
    if match is None:
        raise ParseError(ParseErrorKind.INVALID_NUMBER, token)

    if "." in unsigned_text:
        number = float(unsigned_text)
        return FloatValue(-number if negative else number)

    number = int(unsigned_text)
    if number > 0xFFFFFFFFFFFFFFFF:
        raise ParseError(ParseErrorKind.INVALID_NUMBER, token)
    return _signed_integer(number, negative)


def _signed_integer(number: int, negative: bool) -> PatchValue:
    if negative and number != 0:
        return SignedValue(-number)
    return UnsignedValue(number)


def parse_text(token: str) -> TextValue:
    """Take a token verbatim as a text value."""
    return TextValue(token)


def parse_typed_value(patch_type: PatchType, token: str) -> PatchValue:
    """
    Parse a value column for the given patch type.

    Integer types only accept integers. Float types accept floats and
    widen integers. Utf8 takes the token verbatim.

    Raises:
        ParseError: If the token does not fit the type's value domain
        ValueError: For the Load meta-type, which carries no value
    """
    if patch_type is PatchType.LOAD:
        raise ValueError("Load patches do not carry a value")

    if patch_type.is_text:
        return parse_text(token)

    value = parse_value(token)
    if patch_type.is_float:
        if isinstance(value, IntegerValue):
            return FloatValue(float(value.value))
        return value

    if not isinstance(value, IntegerValue):
        raise ParseError(ParseErrorKind.INVALID_NUMBER, token)
    return value


def parse_offset(token: str) -> int:
    """
    Parse an address column into a 32-bit virtual address.

    Negative addresses wrap around like an unsigned 32-bit cast.

    Raises:
        ParseError: If the token is not an integer
    """
    value = parse_value(token)
    if not isinstance(value, IntegerValue):
        raise ParseError(ParseErrorKind.INVALID_NUMBER, token)
    return value.value & ADDRESS_MASK


def parse_delta(token: str) -> int:
    """
    Parse a signed address delta (the optional third column of a Load row).

    Raises:
        ParseError: If the token is not an integer
    """
    value = parse_value(token)
    if not isinstance(value, IntegerValue):
        raise ParseError(ParseErrorKind.INVALID_NUMBER, token)
    return value.value
