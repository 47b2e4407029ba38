"""Shared pytest fixtures for building test images and patch files."""

import struct

import pytest

from ebootpatch.core.elf_utils import ELF_MAGIC, PF_R, PF_X, PT_LOAD, SCE_MAGIC

# Default layout of the test game ELF: code segment at file offset 0,
# loaded at 0x10000, so the base offset is 0x10000.
GAME_VADDR = 0x10000
GAME_IMAGE_SIZE = 0x2000


def build_elf(
    segments=(),
    sections=(),
    is_64bit: bool = True,
    big_endian: bool = True,
    size: int = GAME_IMAGE_SIZE,
) -> bytes:
    """
    Build a minimal ELF image.

    Args:
        segments: (p_type, p_flags, p_offset, p_vaddr, p_filesz) tuples
        sections: (sh_type, sh_flags, sh_addr, sh_offset, sh_size) tuples
        is_64bit: ELFCLASS64 if True, ELFCLASS32 otherwise
        big_endian: ELFDATA2MSB if True, ELFDATA2LSB otherwise
        size: Total image size (zero padded)
    """
    order = ">" if big_endian else "<"
    header_size = 0x40 if is_64bit else 0x34
    phentsize = 0x38 if is_64bit else 0x20
    shentsize = 0x40 if is_64bit else 0x28
    phoff = header_size if segments else 0
    shoff = header_size + phentsize * len(segments) if sections else 0

    data = bytearray(size)
    data[0:4] = ELF_MAGIC
    data[4] = 2 if is_64bit else 1
    data[5] = 2 if big_endian else 1
    data[6] = 1

    if is_64bit:
        struct.pack_into(order + "QQ", data, 0x20, phoff, shoff)
        struct.pack_into(
            order + "HHHH", data, 0x36, phentsize, len(segments), shentsize, len(sections)
        )
    else:
        struct.pack_into(order + "II", data, 0x1C, phoff, shoff)
        struct.pack_into(
            order + "HHHH", data, 0x2A, phentsize, len(segments), shentsize, len(sections)
        )

    for i, (p_type, p_flags, p_offset, p_vaddr, p_filesz) in enumerate(segments):
        offset = phoff + i * phentsize
        if is_64bit:
            struct.pack_into(
                order + "IIQQQQQQ", data, offset,
                p_type, p_flags, p_offset, p_vaddr, p_vaddr, p_filesz, p_filesz, 0x10000,
            )
        else:
            struct.pack_into(
                order + "IIIIIIII", data, offset,
                p_type, p_offset, p_vaddr, p_vaddr, p_filesz, p_filesz, p_flags, 0x1000,
            )

    for i, (sh_type, sh_flags, sh_addr, sh_offset, sh_size) in enumerate(sections):
        offset = shoff + i * shentsize
        if is_64bit:
            struct.pack_into(
                order + "IIQQQQIIQQ", data, offset,
                0, sh_type, sh_flags, sh_addr, sh_offset, sh_size, 0, 0, 4, 0,
            )
        else:
            struct.pack_into(
                order + "IIIIIIIIII", data, offset,
                0, sh_type, sh_flags, sh_addr, sh_offset, sh_size, 0, 0, 4, 0,
            )

    return bytes(data)


def build_game_elf(vaddr: int = GAME_VADDR, offset: int = 0) -> bytes:
    """PS3-style game ELF (64-bit big-endian) with one code segment."""
    return build_elf(
        segments=[(PT_LOAD, PF_R | PF_X, offset, vaddr, GAME_IMAGE_SIZE - offset)]
    )


def build_sce_container(game_elf: bytes, header_size: int = 0x100, system_elf_size: int = 0x80) -> tuple[bytes, int]:
    """
    Build a decrypted SCE container embedding a system ELF and a game ELF.

    Returns:
        (container bytes, offset of the game ELF)
    """
    header = bytearray(header_size)
    header[0:4] = SCE_MAGIC
    system_elf = bytearray(system_elf_size)
    system_elf[0:4] = ELF_MAGIC

    game_offset = header_size + system_elf_size
    struct.pack_into(">Q", header, 0x30, game_offset)
    return bytes(header + system_elf + game_elf), game_offset


@pytest.fixture
def elf_builder():
    """Function building minimal ELF images."""
    return build_elf


@pytest.fixture
def game_elf():
    """64-bit big-endian ELF with base offset 0x10000."""
    return build_game_elf()


@pytest.fixture
def sce_container(game_elf):
    """(container bytes, game ELF offset) for the default game ELF."""
    return build_sce_container(game_elf)


@pytest.fixture
def game_elf_path(tmp_path, game_elf):
    """Game ELF written to a temporary file."""
    path = tmp_path / "EBOOT.ELF"
    path.write_bytes(game_elf)
    return path


@pytest.fixture
def sce_container_path(tmp_path, sce_container):
    """SCE container written to a temporary file."""
    path = tmp_path / "EBOOT.BIN"
    path.write_bytes(sce_container[0])
    return path


@pytest.fixture
def write_patch_file(tmp_path):
    """Function writing patch YAML text to a temporary file."""

    def _write(text: str, name: str = "patch.yml"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
