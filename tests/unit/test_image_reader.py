"""Unit tests for base offset resolution (ebootpatch.core.image_reader)."""

import io

import pytest

from ebootpatch.core.elf_utils import (
    ELF_MAGIC,
    PF_R,
    PF_W,
    PF_X,
    PT_LOAD,
    SCE_MAGIC,
    SHF_EXECINSTR,
    SHT_NOBITS,
)
from ebootpatch.core.image_reader import (
    STRATEGY_HEADER,
    ImageFormatError,
    ImageReader,
    InvalidImageError,
    NoEmbeddedImageError,
    NoExecutableRegionError,
    UnknownSignatureError,
    elf_base_offset,
    find_embedded_elf,
    resolve_base_offset,
)

PT_NOTE = 4
SHT_PROGBITS = 1


class TestElfBaseOffset:
    """Tests for bare ELF images."""

    def test_first_executable_segment(self, game_elf):
        assert elf_base_offset(game_elf) == 0x10000

    def test_skips_non_executable_segments(self, elf_builder):
        data = elf_builder(
            segments=[
                (PT_LOAD, PF_R | PF_W, 0x1000, 0x50000, 0x100),
                (PT_LOAD, PF_R | PF_X, 0x200, 0x10200, 0x800),
            ]
        )
        assert elf_base_offset(data) == 0x10000

    def test_ignores_executable_non_load_segment(self, elf_builder):
        data = elf_builder(
            segments=[
                (PT_NOTE, PF_X, 0x0, 0x90000, 0x10),
                (PT_LOAD, PF_R | PF_X, 0x0, 0x10000, 0x800),
            ]
        )
        assert elf_base_offset(data) == 0x10000

    def test_first_of_several_executable_segments(self, elf_builder):
        data = elf_builder(
            segments=[
                (PT_LOAD, PF_R | PF_X, 0x100, 0x20100, 0x100),
                (PT_LOAD, PF_R | PF_X, 0x0, 0x10000, 0x100),
            ]
        )
        assert elf_base_offset(data) == 0x20000

    def test_falls_back_to_code_section(self, elf_builder):
        """Images without program headers use the first executable section."""
        data = elf_builder(
            sections=[
                (SHT_NOBITS, SHF_EXECINSTR, 0x90000, 0x0, 0x100),
                (SHT_PROGBITS, 0x2, 0x40000, 0x400, 0x100),
                (SHT_PROGBITS, 0x2 | SHF_EXECINSTR, 0x30400, 0x400, 0x100),
            ]
        )
        assert elf_base_offset(data) == 0x30000

    def test_elf32_little_endian(self, elf_builder):
        data = elf_builder(
            segments=[(PT_LOAD, PF_R | PF_X, 0x1000, 0x8049000, 0x100)],
            is_64bit=False,
            big_endian=False,
        )
        assert elf_base_offset(data) == 0x8048000

    def test_base_can_be_negative(self, elf_builder):
        data = elf_builder(segments=[(PT_LOAD, PF_X, 0x1000, 0x0, 0x100)])
        assert elf_base_offset(data) == -0x1000

    def test_no_executable_region(self, elf_builder):
        data = elf_builder(segments=[(PT_LOAD, PF_R, 0x0, 0x10000, 0x100)])
        with pytest.raises(NoExecutableRegionError):
            elf_base_offset(data)

    def test_truncated_header(self):
        with pytest.raises(InvalidImageError):
            elf_base_offset(ELF_MAGIC + b"\x02\x02\x01" + bytes(8))

    def test_bad_class(self, game_elf):
        data = bytearray(game_elf)
        data[4] = 7
        with pytest.raises(InvalidImageError, match="class"):
            elf_base_offset(bytes(data))

    def test_program_headers_past_end(self, elf_builder):
        data = elf_builder(segments=[(PT_LOAD, PF_X, 0, 0x10000, 0x10)])[:0x50]
        with pytest.raises(InvalidImageError, match="extends past end"):
            elf_base_offset(data)

    def test_errors_are_image_format_errors(self):
        with pytest.raises(ImageFormatError):
            elf_base_offset(ELF_MAGIC)


class TestFindEmbeddedElf:
    """Tests for locating the game ELF in an SCE container."""

    def test_selects_second_signature(self, sce_container):
        data, game_offset = sce_container
        assert find_embedded_elf(data) == game_offset

    def test_two_signatures_picks_later(self):
        """With signatures at A < B, the game ELF starts at B."""
        data = bytearray(0x400)
        data[0:4] = SCE_MAGIC
        data[0x123:0x127] = ELF_MAGIC
        data[0x2F1:0x2F5] = ELF_MAGIC
        assert find_embedded_elf(bytes(data)) == 0x2F1

    def test_unaligned_signature_found(self):
        data = SCE_MAGIC + b"\x00" + ELF_MAGIC + b"\x00\x00\x00" + ELF_MAGIC
        assert find_embedded_elf(data) == 12

    def test_single_signature(self):
        data = SCE_MAGIC + bytes(0x20) + ELF_MAGIC + bytes(0x20)
        with pytest.raises(NoEmbeddedImageError):
            find_embedded_elf(data)

    def test_no_signature(self):
        with pytest.raises(NoEmbeddedImageError, match="decrypt"):
            find_embedded_elf(SCE_MAGIC + bytes(0x100))

    def test_header_strategy(self, sce_container):
        data, game_offset = sce_container
        assert find_embedded_elf(data, STRATEGY_HEADER) == game_offset

    def test_header_strategy_without_elf_at_offset(self):
        data = bytearray(0x100)
        data[0:4] = SCE_MAGIC
        data[0x37] = 0x80
        with pytest.raises(NoEmbeddedImageError):
            find_embedded_elf(bytes(data), STRATEGY_HEADER)

    def test_header_strategy_truncated(self):
        with pytest.raises(NoEmbeddedImageError):
            find_embedded_elf(SCE_MAGIC + bytes(4), STRATEGY_HEADER)

    def test_unknown_strategy(self, sce_container):
        with pytest.raises(ValueError, match="strategy"):
            find_embedded_elf(sce_container[0], "guess")


class TestResolveBaseOffset:
    """Tests for resolve_base_offset()."""

    def test_bare_elf(self, game_elf):
        assert resolve_base_offset(game_elf) == 0x10000

    def test_container_relative_to_container(self, sce_container):
        """Container base is the ELF base minus the ELF start offset."""
        data, game_offset = sce_container
        assert resolve_base_offset(data) == 0x10000 - game_offset

    def test_container_header_strategy(self, sce_container):
        data, game_offset = sce_container
        assert resolve_base_offset(data, STRATEGY_HEADER) == 0x10000 - game_offset

    def test_unknown_signature(self):
        with pytest.raises(UnknownSignatureError, match="decrypt"):
            resolve_base_offset(b"NOPE" + bytes(0x40))

    def test_empty_image(self):
        with pytest.raises(UnknownSignatureError):
            resolve_base_offset(b"")

    def test_stream_position_restored(self, game_elf):
        stream = io.BytesIO(b"junk" + game_elf)
        stream.seek(4)
        assert resolve_base_offset(stream) == 0x10000
        assert stream.tell() == 4


class TestImageReader:
    """Tests for the file-based ImageReader."""

    def test_bare_elf_file(self, game_elf_path):
        reader = ImageReader(game_elf_path)
        assert reader.base_offset == 0x10000
        assert not reader.is_container
        assert reader.embedded_image is None

    def test_container_file(self, sce_container_path, sce_container, game_elf):
        reader = ImageReader(sce_container_path)
        game_offset = sce_container[1]
        assert reader.is_container
        assert reader.embedded_offset == game_offset
        assert reader.base_offset == 0x10000 - game_offset
        assert reader.embedded_image == game_elf

    def test_extract_elf(self, sce_container_path, game_elf):
        reader = ImageReader(sce_container_path)
        path = reader.extract_elf()
        assert path.name == "EBOOT.BIN.elf"
        assert path.read_bytes() == game_elf

    def test_extract_elf_from_bare_elf(self, game_elf_path):
        reader = ImageReader(game_elf_path)
        with pytest.raises(ValueError):
            reader.extract_elf()
