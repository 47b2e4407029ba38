"""
EBOOT Patcher - ELF and SCE layout constants and table parsing.

This module provides:
- Signature constants for bare ELF images and SCE containers
- ELF header field constants (class, data encoding, segment/section flags)
- Parsers for the ELF header, program header table and section header table

Both 32-bit and 64-bit ELF files in either byte order are supported. PS3
executables are 64-bit big-endian.

Used by ImageReader to find the first executable region of an image.
"""

import struct
from dataclasses import dataclass

# ============================================================================
# Signatures
# ============================================================================
ELF_MAGIC = b"\x7fELF"
SCE_MAGIC = b"SCE\x00"
MAGIC_SIZE = 4

# SCE extended header: 64-bit big-endian offset of the embedded ELF header
SCE_ELF_OFFSET_FIELD = 0x30

# ============================================================================
# ELF identification
# ============================================================================
EI_CLASS = 4
EI_DATA = 5
ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2

ELF32_HEADER_SIZE = 0x34
ELF64_HEADER_SIZE = 0x40
ELF32_PHDR_SIZE = 0x20
ELF64_PHDR_SIZE = 0x38
ELF32_SHDR_SIZE = 0x28
ELF64_SHDR_SIZE = 0x40

# Segment / section constants
PT_LOAD = 1
PF_X = 0x1
PF_W = 0x2
PF_R = 0x4
SHT_NOBITS = 8
SHF_EXECINSTR = 0x4


class ElfFormatError(ValueError):
    """Raised when ELF header or table data is malformed."""

    pass


@dataclass(frozen=True)
class ElfHeader:
    """ELF header fields needed to walk the program and section tables."""

    is_64bit: bool
    big_endian: bool
    e_phoff: int
    e_shoff: int
    e_phentsize: int
    e_phnum: int
    e_shentsize: int
    e_shnum: int

    @property
    def byte_order(self) -> str:
        return ">" if self.big_endian else "<"


@dataclass(frozen=True)
class ProgramHeader:
    p_type: int
    p_flags: int
    p_offset: int
    p_vaddr: int
    p_filesz: int
    p_memsz: int

    @property
    def is_executable(self) -> bool:
        return bool(self.p_flags & PF_X)


@dataclass(frozen=True)
class SectionHeader:
    sh_type: int
    sh_flags: int
    sh_addr: int
    sh_offset: int
    sh_size: int

    @property
    def is_executable(self) -> bool:
        return bool(self.sh_flags & SHF_EXECINSTR) and self.sh_type != SHT_NOBITS


def has_magic(data: bytes, magic: bytes, offset: int = 0) -> bool:
    """Check for a signature at offset without consuming anything."""
    return data[offset : offset + len(magic)] == magic


def read_elf_header(data: bytes) -> ElfHeader:
    """
    Parse the ELF header.

    Args:
        data: ELF image bytes (starting at the ELF signature)

    Returns:
        Parsed ElfHeader

    Raises:
        ElfFormatError: If the signature, class, data encoding or header
            size is invalid
    """
    if not has_magic(data, ELF_MAGIC):
        raise ElfFormatError("Not an ELF file")
    if len(data) < EI_DATA + 1:
        raise ElfFormatError("Truncated ELF identification")

    elf_class = data[EI_CLASS]
    elf_data = data[EI_DATA]
    if elf_class not in (ELFCLASS32, ELFCLASS64):
        raise ElfFormatError(f"Unknown ELF class {elf_class}")
    if elf_data not in (ELFDATA2LSB, ELFDATA2MSB):
        raise ElfFormatError(f"Unknown ELF data encoding {elf_data}")

    is_64bit = elf_class == ELFCLASS64
    order = ">" if elf_data == ELFDATA2MSB else "<"
    header_size = ELF64_HEADER_SIZE if is_64bit else ELF32_HEADER_SIZE
    if len(data) < header_size:
        raise ElfFormatError(
            f"Truncated ELF header ({len(data)} bytes, need {header_size})"
        )

    if is_64bit:
        e_phoff, e_shoff = struct.unpack_from(order + "QQ", data, 0x20)
        e_phentsize, e_phnum, e_shentsize, e_shnum = struct.unpack_from(
            order + "HHHH", data, 0x36
        )
    else:
        e_phoff, e_shoff = struct.unpack_from(order + "II", data, 0x1C)
        e_phentsize, e_phnum, e_shentsize, e_shnum = struct.unpack_from(
            order + "HHHH", data, 0x2A
        )

    return ElfHeader(
        is_64bit=is_64bit,
        big_endian=elf_data == ELFDATA2MSB,
        e_phoff=e_phoff,
        e_shoff=e_shoff,
        e_phentsize=e_phentsize,
        e_phnum=e_phnum,
        e_shentsize=e_shentsize,
        e_shnum=e_shnum,
    )


def _check_table(data: bytes, offset: int, entsize: int, count: int, minimum: int, name: str):
    if count == 0:
        return
    if entsize < minimum:
        raise ElfFormatError(f"{name} entry size {entsize} is too small")
    if offset + entsize * count > len(data):
        raise ElfFormatError(
            f"{name} table at 0x{offset:X} ({count} entries) extends past end of image"
        )


def read_program_headers(data: bytes, header: ElfHeader) -> list[ProgramHeader]:
    """
    Parse the program header (segment) table.

    Raises:
        ElfFormatError: If the table does not fit in the image
    """
    minimum = ELF64_PHDR_SIZE if header.is_64bit else ELF32_PHDR_SIZE
    _check_table(
        data, header.e_phoff, header.e_phentsize, header.e_phnum, minimum, "Program header"
    )

    order = header.byte_order
    segments = []
    for i in range(header.e_phnum):
        offset = header.e_phoff + i * header.e_phentsize
        if header.is_64bit:
            p_type, p_flags, p_offset, p_vaddr, _paddr, p_filesz, p_memsz = (
                struct.unpack_from(order + "IIQQQQQ", data, offset)
            )
        else:
            p_type, p_offset, p_vaddr, _paddr, p_filesz, p_memsz, p_flags = (
                struct.unpack_from(order + "IIIIIII", data, offset)
            )
        segments.append(
            ProgramHeader(p_type, p_flags, p_offset, p_vaddr, p_filesz, p_memsz)
        )
    return segments


def read_section_headers(data: bytes, header: ElfHeader) -> list[SectionHeader]:
    """
    Parse the section header table.

    Raises:
        ElfFormatError: If the table does not fit in the image
    """
    minimum = ELF64_SHDR_SIZE if header.is_64bit else ELF32_SHDR_SIZE
    _check_table(
        data, header.e_shoff, header.e_shentsize, header.e_shnum, minimum, "Section header"
    )

    order = header.byte_order
    sections = []
    for i in range(header.e_shnum):
        offset = header.e_shoff + i * header.e_shentsize
        if header.is_64bit:
            _name, sh_type, sh_flags, sh_addr, sh_offset, sh_size = struct.unpack_from(
                order + "IIQQQQ", data, offset
            )
        else:
            _name, sh_type, sh_flags, sh_addr, sh_offset, sh_size = struct.unpack_from(
                order + "IIIIII", data, offset
            )
        sections.append(SectionHeader(sh_type, sh_flags, sh_addr, sh_offset, sh_size))
    return sections


def read_sce_elf_offset(data: bytes) -> int:
    """
    Read the embedded ELF offset from an SCE extended header.

    Raises:
        ElfFormatError: If the container is too short to hold the field
    """
    if len(data) < SCE_ELF_OFFSET_FIELD + 8:
        raise ElfFormatError("Truncated SCE header")
    return struct.unpack_from(">Q", data, SCE_ELF_OFFSET_FIELD)[0]
