"""
EBOOT Patcher - Instrumented Image I/O

Instrumented ImageWriter that logs every write with an annotation, so a run
can be reviewed as a "patch map" of which bytes changed and why.
"""

import json

from ..formats.patch_data import Patch, PatchUnit
from .image_writer import ImageWriter, PatchRecord

MAX_TRACE_HEX_BYTES = 32


class InstrumentedImageWriter(ImageWriter):
    """
    ImageWriter subclass that logs all write operations with annotations.

    Usage:
        writer = InstrumentedImageWriter("EBOOT.BIN", "EBOOT.patched.bin")
        writer.apply_units(base_offset, units)
        writer.write_trace("write_trace.json")
    """

    def _init_state(self):
        self._pending_annotation: str | None = None
        self._pending_address: int | None = None
        self._trace: list[dict] = []

    def annotate(self, description: str, virtual_address: int | None = None) -> "InstrumentedImageWriter":
        """
        Annotate the next write operation.

        Args:
            description: Human-readable description of the operation
            virtual_address: Virtual address the write corresponds to

        Returns:
            self (for method chaining)
        """
        self._pending_annotation = description
        self._pending_address = virtual_address
        return self

    def _log_write(self, position: int, data: bytes):
        """Log a write operation to the trace."""
        length = len(data)
        if length <= MAX_TRACE_HEX_BYTES:
            value_hex = data.hex(" ").upper()
        else:
            value_hex = f"{data[:MAX_TRACE_HEX_BYTES].hex(' ').upper()}... ({length} bytes)"

        entry = {
            "type": "write",
            "annotation": self._pending_annotation or "[no annotation]",
            "file_position": f"0x{position:08X}",
            "length": length,
            "value_hex": value_hex,
        }
        if self._pending_address is not None:
            entry["virtual_address"] = f"0x{self._pending_address:08X}"

        self._trace.append(entry)
        self._pending_annotation = None
        self._pending_address = None

    def apply_patch(
        self, base_offset: int, patch: Patch, unit: PatchUnit | None = None
    ) -> PatchRecord:
        """Encode and write a single patch with logging."""
        name = unit.name if unit is not None else "[no unit]"
        self.annotate(f"{name}: {patch.type}", virtual_address=patch.offset)
        return super().apply_patch(base_offset, patch, unit)

    def write_bytes(self, position: int, data: bytes, unit: PatchUnit | None = None):
        """Overwrite bytes at a file position with logging."""
        super().write_bytes(position, data, unit)
        self._log_write(position, data)

    def get_trace(self) -> list[dict]:
        """Get the list of logged operations."""
        return self._trace

    def write_trace(self, path: str):
        """
        Write trace to JSON file.

        Args:
            path: Output file path
        """
        with open(path, "w") as f:
            json.dump({"entries": self._trace}, f, indent=2)
        print(f"Wrote write trace ({len(self._trace)} entries) to: {path}")
