"""
EBOOT Patcher - Image Reader

Reads an executable image and determines its base offset: the constant
difference between a virtual address in the loaded module and the matching
file offset. Handles both bare ELF images and decrypted SCE containers that
embed the game ELF.
"""

from pathlib import Path
from typing import BinaryIO

from .elf_utils import (
    ELF_MAGIC,
    PT_LOAD,
    SCE_MAGIC,
    ElfFormatError,
    has_magic,
    read_elf_header,
    read_program_headers,
    read_sce_elf_offset,
    read_section_headers,
)

# Embedded ELF location strategies for SCE containers
STRATEGY_SCAN = "scan"
STRATEGY_HEADER = "header"
CONTAINER_STRATEGIES = (STRATEGY_SCAN, STRATEGY_HEADER)

# The first embedded ELF is system/bootstrap code, the second is the game
GAME_ELF_OCCURRENCE = 2


class ImageFormatError(ValueError):
    """Base class for errors about the layout of the input image."""

    pass


class UnknownSignatureError(ImageFormatError):
    """Raised when the image is neither an ELF nor an SCE container."""

    pass


class InvalidImageError(ImageFormatError):
    """Raised when the ELF header or its tables are malformed."""

    pass


class NoExecutableRegionError(ImageFormatError):
    """Raised when the ELF has no executable segment or section."""

    pass


class NoEmbeddedImageError(ImageFormatError):
    """Raised when an SCE container does not embed a game ELF."""

    pass


def elf_base_offset(data: bytes) -> int:
    """
    Compute the base offset of a bare ELF image.

    Uses the first loadable segment with the execute flag. Images without
    such a segment fall back to the first executable section.

    Args:
        data: ELF image bytes

    Returns:
        virtual_address - file_offset of the first code region

    Raises:
        InvalidImageError: If the header or tables are malformed
        NoExecutableRegionError: If no executable region exists
    """
    try:
        header = read_elf_header(data)
        segments = read_program_headers(data, header)
        for segment in segments:
            if segment.p_type == PT_LOAD and segment.is_executable:
                return segment.p_vaddr - segment.p_offset

        sections = read_section_headers(data, header)
    except ElfFormatError as e:
        raise InvalidImageError(f"Invalid ELF: {e}") from e

    for section in sections:
        if section.is_executable:
            return section.sh_addr - section.sh_offset

    raise NoExecutableRegionError("Invalid ELF. No executable segment found.")


def find_embedded_elf(data: bytes, strategy: str = STRATEGY_SCAN) -> int:
    """
    Locate the game ELF inside an SCE container.

    Args:
        data: Container bytes
        strategy: "scan" searches for the second ELF signature,
            "header" reads the ELF offset from the SCE extended header

    Returns:
        Offset of the embedded game ELF within the container

    Raises:
        NoEmbeddedImageError: If no game ELF can be found
    """
    if strategy == STRATEGY_HEADER:
        try:
            elf_offset = read_sce_elf_offset(data)
        except ElfFormatError as e:
            raise NoEmbeddedImageError(str(e)) from e
        if not has_magic(data, ELF_MAGIC, elf_offset):
            raise NoEmbeddedImageError(
                f"Invalid EBOOT. No ELF data at header offset 0x{elf_offset:X}. "
                "Did you maybe forget to decrypt it?"
            )
        return elf_offset

    if strategy != STRATEGY_SCAN:
        raise ValueError(f"Unknown container strategy: {strategy!r}")

    position = 0
    found = 0
    while True:
        position = data.find(ELF_MAGIC, position)
        if position == -1:
            break
        found += 1
        if found == GAME_ELF_OCCURRENCE:
            return position
        position += len(ELF_MAGIC)

    raise NoEmbeddedImageError(
        "Invalid EBOOT. Can't find start of ELF data. "
        "Did you maybe forget to decrypt it?"
    )


def resolve_base_offset(image: bytes | BinaryIO, strategy: str = STRATEGY_SCAN) -> int:
    """
    Determine the base offset of an image.

    For SCE containers the result is relative to the container, so that
    virtual_address - base_offset is a position in the container file.

    Args:
        image: Image bytes or a readable binary stream
        strategy: Embedded ELF location strategy for SCE containers

    Returns:
        Base offset

    Raises:
        ImageFormatError: If the base offset cannot be determined
    """
    if not isinstance(image, (bytes, bytearray, memoryview)):
        position = image.tell()
        data = image.read()
        image.seek(position)
    else:
        data = bytes(image)

    return _resolve(data, strategy)[0]


def _resolve(data: bytes, strategy: str) -> tuple[int, int | None]:
    if has_magic(data, ELF_MAGIC):
        return elf_base_offset(data), None

    if not has_magic(data, SCE_MAGIC):
        raise UnknownSignatureError(
            "Invalid EBOOT. Did you maybe forget to decrypt it?"
        )

    elf_offset = find_embedded_elf(data, strategy)
    return elf_base_offset(data[elf_offset:]) - elf_offset, elf_offset


class ImageReader:
    """
    Reads an EBOOT image from disk and resolves its base offset.

    Attributes:
        data: Complete image bytes
        base_offset: virtual_address - file_position for this file
        embedded_offset: Start of the game ELF inside an SCE container,
            or None for a bare ELF
    """

    def __init__(self, image_path: str | Path, strategy: str = STRATEGY_SCAN):
        """
        Load an image and resolve its base offset.

        Args:
            image_path: Path to EBOOT.BIN or ELF file
            strategy: Embedded ELF location strategy for SCE containers

        Raises:
            ImageFormatError: If the base offset cannot be determined
        """
        with open(image_path, "rb") as f:
            self.data = f.read()

        self.image_path = Path(image_path)
        self.base_offset, self.embedded_offset = _resolve(self.data, strategy)

    @property
    def is_container(self) -> bool:
        return self.embedded_offset is not None

    @property
    def embedded_image(self) -> bytes | None:
        """The game ELF extracted from an SCE container."""
        if self.embedded_offset is None:
            return None
        return self.data[self.embedded_offset :]

    def extract_elf(self, output_path: str | Path | None = None) -> Path:
        """
        Write the embedded game ELF to disk.

        Args:
            output_path: Destination (default: <image>.elf)

        Returns:
            Path that was written

        Raises:
            ValueError: If the image is not an SCE container
        """
        if self.embedded_offset is None:
            raise ValueError(f"{self.image_path} is a bare ELF, nothing to extract")

        if output_path is None:
            output_path = str(self.image_path) + ".elf"
        output_path = Path(output_path)
        output_path.write_bytes(self.embedded_image)
        print(f"Wrote embedded ELF to: {output_path}")
        return output_path
