"""
EBOOT Patcher - Image Writer

Applies resolved patch units to a copy of an executable image. Virtual
addresses are translated to file positions with the image's base offset.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from ..formats.patch_data import Patch, PatchType, PatchUnit
from .patch_encoding import EncodingError, encode_patch

DEFAULT_OUTPUT_SUFFIX = ".patched.bin"


class WriteError(Exception):
    """Raised when a patch cannot be written to the image."""

    pass


@dataclass(frozen=True)
class PatchRecord:
    """Progress record for one written patch."""

    file_position: int
    value_display: str
    patch_type: PatchType

    def __str__(self) -> str:
        return f"{self.file_position:08X} -> {self.value_display} ({self.patch_type})"


class ImageWriter:
    """
    Writes patches into an in-memory copy of an image.

    The output starts as an exact clone of the input; only the bytes
    covered by patches change.
    """

    def __init__(self, image_path: str | Path, output_path: str | Path):
        """
        Load an image for patching.

        Args:
            image_path: Source image (read-only)
            output_path: Output image path (created/overwritten by save())
        """
        with open(image_path, "rb") as f:
            self.image_data = bytearray(f.read())

        self.output_path = Path(output_path)
        self._init_state()

    @classmethod
    def from_bytes(cls, data: bytes, output_path: str | Path | None = None) -> "ImageWriter":
        """Create a writer over image bytes that are already in memory."""
        writer = cls.__new__(cls)
        writer.image_data = bytearray(data)
        writer.output_path = Path(output_path) if output_path is not None else None
        writer._init_state()
        return writer

    def _init_state(self):
        """Hook for subclasses that keep extra state."""
        pass

    def file_position(self, base_offset: int, patch: Patch) -> int:
        """Translate a patch's virtual address into a file position."""
        return patch.offset - base_offset

    def write_bytes(self, position: int, data: bytes, unit: PatchUnit | None = None):
        """
        Overwrite bytes at a file position.

        Raises:
            WriteError: If the range does not lie inside the image
        """
        if position < 0:
            raise WriteError(f"Patch file position {position:#x} is negative")
        if position + len(data) > len(self.image_data):
            raise WriteError(
                f"Patch at file position 0x{position:08X} ({len(data)} bytes) "
                f"extends past end of image (0x{len(self.image_data):X} bytes)"
            )
        self.image_data[position : position + len(data)] = data

    def apply_patch(
        self, base_offset: int, patch: Patch, unit: PatchUnit | None = None
    ) -> PatchRecord:
        """
        Encode and write a single patch.

        Raises:
            WriteError: If the patch type cannot be written or the position
                is outside the image
        """
        position = self.file_position(base_offset, patch)

        try:
            data = encode_patch(patch.type, patch.value)
        except EncodingError as e:
            raise WriteError(f"Unable to write {patch}: {e}") from e

        record = PatchRecord(position, patch.value.display(), patch.type)
        print(record)
        self.write_bytes(position, data, unit)
        return record

    def apply_units(self, base_offset: int, units: list[PatchUnit]) -> list[PatchRecord]:
        """
        Apply patch units in order.

        Args:
            base_offset: virtual_address - file_position for this image
            units: Resolved patch units

        Returns:
            One PatchRecord per written patch

        Raises:
            WriteError: On the first patch that cannot be written
        """
        records = []
        for unit in units:
            print(f"Applying patch unit {unit.name}")
            for patch in unit.patches:
                records.append(self.apply_patch(base_offset, patch, unit))
        return records

    def save(self):
        """Write the patched image to the output file."""
        with open(self.output_path, "wb") as f:
            f.write(self.image_data)
        print(f"Wrote patched image to: {self.output_path}")

    @staticmethod
    def default_output_path(image_path: str | Path) -> Path:
        """Output path used when none is given: <image>.patched.bin"""
        return Path(str(image_path) + DEFAULT_OUTPUT_SUFFIX)


def apply(
    base_offset: int,
    units: list[PatchUnit],
    input_image: BinaryIO,
    output_image: BinaryIO,
) -> list[PatchRecord]:
    """
    Copy an image stream to an output stream and apply patch units to it.

    Args:
        base_offset: virtual_address - file_position for this image
        units: Resolved patch units
        input_image: Readable binary stream of the source image
        output_image: Writable binary stream receiving the patched image

    Returns:
        One PatchRecord per written patch

    Raises:
        WriteError: On the first patch that cannot be written
    """
    writer = ImageWriter.from_bytes(input_image.read())
    records = writer.apply_units(base_offset, units)
    output_image.write(writer.image_data)
    return records
