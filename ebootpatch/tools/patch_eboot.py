#!/usr/bin/env python3
"""
EBOOT Patcher - Apply RPCS3 patches to an EBOOT

Applies the patches of an RPCS3 patch.yml file (old format) directly to a
PS3 executable, so the game runs patched without the emulator's patch
engine. Accepts a bare ELF or a decrypted SCE EBOOT.BIN.

Patches are filtered by PPU hash and/or by patch name:
  - With --filter-by-hash, only the matching PPU-/SPU- entry is applied;
    named units are pulled in by its Load rows.
  - Without it, every named unit is applied directly.
"""

import argparse
import sys
from pathlib import Path

from ebootpatch.core.image_reader import (
    CONTAINER_STRATEGIES,
    STRATEGY_SCAN,
    ImageFormatError,
    ImageReader,
)
from ebootpatch.core.image_writer import ImageWriter, WriteError
from ebootpatch.core.instrumented_io import InstrumentedImageWriter
from ebootpatch.core.patch_resolver import PatchResolver
from ebootpatch.formats.patch_yaml import SpecificationError, load_patch_yaml


def print_units(units) -> None:
    """Print resolved patch units without writing anything."""
    print(f"Resolved {len(units)} patch unit(s):")
    for unit in units:
        print(f"  {unit.name}")
        for patch in unit.patches:
            print(f"    {patch}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply RPCS3 patch.yml patches directly to an EBOOT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply all named patches
  eboot-patch EBOOT.BIN patch.yml

  # Apply the patches for one PPU hash
  eboot-patch EBOOT.BIN patch.yml -o EBOOT.patched.BIN \\
      --filter-by-hash PPU-0123456789abcdef0123456789abcdef01234567

  # Only consider some of the named units
  eboot-patch EBOOT.BIN patch.yml --filter-by-name "60 FPS" "Skip intro"

Notes:
  The YAML standard doesn't allow duplicate keys but RPCS3's parser does.
  A repeated key (including a repeated PPU- hash) keeps its first
  definition; later ones are reported and ignored.
""",
    )

    parser.add_argument("input", help="Path to EBOOT (bare ELF or decrypted SCE)")
    parser.add_argument("patch_file", help="Path to patch YAML")
    parser.add_argument(
        "output",
        nargs="?",
        default=None,
        help="Path to patched EBOOT output (default: <input>.patched.bin)",
    )
    parser.add_argument(
        "-o",
        "--output",
        dest="output_option",
        default=None,
        help="Path to patched EBOOT output (overrides the positional output)",
    )
    parser.add_argument(
        "--filter-by-hash",
        "-FilterByHash",
        dest="hash_filter",
        metavar="HASH",
        help='Only apply the entry for this hash, e.g. "PPU-<40 hex digits>"',
    )
    parser.add_argument(
        "--filter-by-name",
        "-FilterByName",
        dest="name_filter",
        nargs="+",
        metavar="NAME",
        help="Only consider named patch units with these names",
    )
    parser.add_argument(
        "--register-always",
        action="store_true",
        help="Make named units available to Load even without --filter-by-hash",
    )
    parser.add_argument(
        "--container-strategy",
        choices=CONTAINER_STRATEGIES,
        default=STRATEGY_SCAN,
        help="How to find the game ELF inside an SCE container (default: scan)",
    )
    parser.add_argument(
        "--extract-elf",
        action="store_true",
        help="Write the game ELF embedded in an SCE container to <input>.elf",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve and list the patches without writing the output",
    )
    parser.add_argument(
        "--trace-io",
        action="store_true",
        help="Output a write trace to write_trace.json next to the output",
    )
    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    input_path = Path(args.input)
    if not input_path.is_file():
        print(f"Error: EBOOT not found: {input_path}")
        sys.exit(1)

    patch_path = Path(args.patch_file)
    if not patch_path.is_file():
        print(f"Error: Patch YAML not found: {patch_path}")
        sys.exit(1)

    output = args.output_option or args.output
    output_path = Path(output) if output else ImageWriter.default_output_path(input_path)

    try:
        print(f"Loading EBOOT: {input_path}")
        reader = ImageReader(input_path, strategy=args.container_strategy)
        if reader.is_container:
            print(f"Found game ELF at container offset 0x{reader.embedded_offset:X}")
        print(f"Base offset: 0x{reader.base_offset:X}")

        if args.extract_elf:
            if reader.is_container:
                reader.extract_elf()
            else:
                print("Warning: --extract-elf ignored, input is already an ELF")

        print(f"Loading patch YAML: {patch_path}")
        spec = load_patch_yaml(patch_path)

        resolver = PatchResolver(
            hash_filter=args.hash_filter,
            name_filter=args.name_filter,
            register_always=args.register_always,
        )
        result = resolver.resolve(spec)
        print(
            f"Resolved {len(result.units)} patch unit(s), "
            f"{result.patch_count} patch(es)"
        )

        if args.dry_run:
            print_units(result.units)
            sys.exit(0)

        if args.trace_io:
            writer = InstrumentedImageWriter.from_bytes(reader.data, output_path)
        else:
            writer = ImageWriter.from_bytes(reader.data, output_path)

        writer.apply_units(reader.base_offset, result.units)
        writer.save()

        if args.trace_io:
            writer.write_trace(str(output_path.parent / "write_trace.json"))

    except ImageFormatError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except SpecificationError as e:
        print(f"Error: Invalid patch YAML.\n{e}")
        sys.exit(1)
    except WriteError as e:
        print(f"Error: Failed to apply patches to EBOOT. {e}")
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("Success. Patches were applied successfully!")


if __name__ == "__main__":
    main()
