"""
Core EBOOT patching functionality.

This package contains image reading (base offset resolution), patch file
resolution, patch encoding and image writing.
"""

from .image_reader import ImageReader, ImageFormatError, resolve_base_offset
from .image_writer import ImageWriter, PatchRecord, WriteError
from .instrumented_io import InstrumentedImageWriter
from .patch_resolver import PatchEntryError, PatchResolver, ResolveResult, resolve_patch_units

__all__ = [
    "ImageReader",
    "ImageFormatError",
    "resolve_base_offset",
    "ImageWriter",
    "PatchRecord",
    "WriteError",
    "InstrumentedImageWriter",
    "PatchEntryError",
    "PatchResolver",
    "ResolveResult",
    "resolve_patch_units",
]
