"""
EBOOT Patcher - Patch Data Model

Typed patch records produced by the patch resolver and consumed by the
image writer:
- PatchType: the closed set of patch kinds (width, byte order, value kind)
- PatchValue variants: UnsignedValue, SignedValue, FloatValue, TextValue
- Patch: one typed edit at a virtual address
- PatchUnit: a named, ordered group of patches
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

ADDRESS_MASK = 0xFFFFFFFF
UINT64_MASK = 0xFFFFFFFFFFFFFFFF


class PatchType(Enum):
    """
    Patch kinds understood by the RPCS3 patch format.

    The value of each member is its canonical spelling in patch files.
    """

    LOAD = "Load"
    BYTE = "Byte"
    LE16 = "Le16"
    LE32 = "Le32"
    LEF32 = "LeF32"
    LE64 = "Le64"
    LEF64 = "LeF64"
    BE16 = "Be16"
    BE32 = "Be32"
    BEF32 = "BeF32"
    BE64 = "Be64"
    BEF64 = "BeF64"
    UTF8 = "Utf8"

    @classmethod
    def from_name(cls, name: str) -> "PatchType":
        """
        Look up a patch type by name, ignoring case.

        Args:
            name: Type name as written in the patch file (e.g. "be32")

        Returns:
            Matching PatchType

        Raises:
            ValueError: If the name is not a known patch type
        """
        key = name.strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValueError(f"Unknown patch type: {name!r}")

    @property
    def is_float(self) -> bool:
        return self in (
            PatchType.LEF32,
            PatchType.LEF64,
            PatchType.BEF32,
            PatchType.BEF64,
        )

    @property
    def is_text(self) -> bool:
        return self is PatchType.UTF8

    @property
    def is_integer(self) -> bool:
        return not (self.is_float or self.is_text or self is PatchType.LOAD)

    @property
    def width(self) -> int | None:
        """Encoded size in bytes (None for variable-width or meta types)."""
        return _TYPE_WIDTHS.get(self)

    @property
    def big_endian(self) -> bool:
        return self.value.startswith("Be")

    def __str__(self) -> str:
        return self.value


_TYPE_WIDTHS = {
    PatchType.BYTE: 1,
    PatchType.LE16: 2,
    PatchType.BE16: 2,
    PatchType.LE32: 4,
    PatchType.LEF32: 4,
    PatchType.BE32: 4,
    PatchType.BEF32: 4,
    PatchType.LE64: 8,
    PatchType.LEF64: 8,
    PatchType.BE64: 8,
    PatchType.BEF64: 8,
}


@dataclass(frozen=True)
class UnsignedValue:
    """Non-negative integer value (0 .. 2**64-1)."""

    value: int

    def display(self) -> str:
        return f"{self.value:08X}"


@dataclass(frozen=True)
class SignedValue:
    """Negative integer value, written as two's complement."""

    value: int

    def display(self) -> str:
        return f"{self.value & UINT64_MASK:08X}"


@dataclass(frozen=True)
class FloatValue:
    """IEEE-754 floating point value."""

    value: float

    def display(self) -> str:
        if self.value.is_integer():
            return f"{int(self.value) & UINT64_MASK:08X}"
        return repr(self.value)


@dataclass(frozen=True)
class TextValue:
    """Raw text, written as UTF-8."""

    value: str

    def display(self) -> str:
        return self.value


PatchValue = Union[UnsignedValue, SignedValue, FloatValue, TextValue]
IntegerValue = (UnsignedValue, SignedValue)


@dataclass(frozen=True)
class Patch:
    """
    A single typed edit.

    The offset is a virtual address until the image writer translates it
    with the image's base offset.
    """

    type: PatchType
    offset: int
    value: PatchValue

    def __post_init__(self):
        object.__setattr__(self, "offset", self.offset & ADDRESS_MASK)

    def shifted(self, delta: int) -> "Patch":
        """Return a copy of this patch moved by delta (32-bit wraparound)."""
        return Patch(self.type, (self.offset + delta) & ADDRESS_MASK, self.value)

    def __str__(self) -> str:
        return f"{self.type} 0x{self.offset:08X} {self.value.display()}"


@dataclass
class PatchUnit:
    """A named, ordered group of patches."""

    name: str
    patches: list[Patch] = field(default_factory=list)

    def copy(self) -> "PatchUnit":
        """Return a unit with the same name and its own patch list."""
        return PatchUnit(self.name, list(self.patches))

    def shifted(self, delta: int) -> "PatchUnit":
        """
        Return a new unit with every patch offset moved by delta.

        The source unit is left untouched.
        """
        return PatchUnit(self.name, [patch.shifted(delta) for patch in self.patches])

    def __str__(self) -> str:
        return self.name
