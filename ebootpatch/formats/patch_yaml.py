"""
EBOOT Patcher - Patch File Loading

Loads an RPCS3 patch file (old format) into the generic mapping consumed by
the patch resolver:

    {key: [[type, offset_or_unit, value_or_delta, ...], ...], ...}

Every scalar is kept as the string written in the file, so offsets such as
0x00123456 are not turned into integers by the YAML loader.
"""

from pathlib import Path

import yaml

TAB_REPLACEMENT = "    "

PatchSpec = dict[str, list[list[str]]]


class SpecificationError(ValueError):
    """Raised when a patch file cannot be read as a patch mapping."""

    pass


class PatchFileLoader(yaml.BaseLoader):
    """
    BaseLoader that keeps the first definition of a duplicated mapping key.

    RPCS3 patch files sometimes repeat a key. Later definitions are dropped
    and recorded in duplicate_keys as (key, line) pairs.
    """

    def __init__(self, stream):
        super().__init__(stream)
        self.duplicate_keys: list[tuple[str, int]] = []

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            kept = []
            for key_node, value_node in node.value:
                if isinstance(key_node, yaml.ScalarNode):
                    if key_node.value in seen:
                        self.duplicate_keys.append(
                            (key_node.value, key_node.start_mark.line + 1)
                        )
                        continue
                    seen.add(key_node.value)
                kept.append((key_node, value_node))
            node.value = kept
        return super().construct_mapping(node, deep=deep)


def parse_patch_yaml(text: str) -> PatchSpec:
    """
    Parse patch file text into the generic patch mapping.

    Tabs are replaced by four spaces before parsing, since RPCS3 patch files
    are frequently hand-edited with tab indentation. A duplicated key keeps
    its first definition and a warning is printed for each later one.

    Args:
        text: Patch file contents

    Returns:
        Ordered mapping of top-level key to rows of string columns

    Raises:
        SpecificationError: If the text is not valid YAML or not shaped
            like a patch mapping
    """
    text = text.replace("\t", TAB_REPLACEMENT)

    loader = PatchFileLoader(text)
    try:
        document = loader.get_single_data()
    except yaml.YAMLError as e:
        raise SpecificationError(f"Invalid patch YAML: {e}") from e
    finally:
        loader.dispose()

    for key, line in loader.duplicate_keys:
        print(
            f"Warning: Duplicate key {key} on line {line} is ignored, "
            "the first definition is used."
        )

    if document is None:
        return {}

    return validate_patch_spec(document)


def validate_patch_spec(document) -> PatchSpec:
    """
    Check that a parsed document is a mapping of key to rows of strings.

    A key without a value is treated as an entry with no rows.

    Raises:
        SpecificationError: On any shape mismatch
    """
    if not isinstance(document, dict):
        raise SpecificationError(
            f"Patch file must be a mapping, got {type(document).__name__}"
        )

    spec: PatchSpec = {}
    for key, rows in document.items():
        if not isinstance(key, str):
            raise SpecificationError(f"Patch key must be a string: {key!r}")

        if rows is None or rows == "":
            spec[key] = []
            continue

        if not isinstance(rows, list):
            raise SpecificationError(f"Entry '{key}' must be a list of patches")

        spec_rows = []
        for row in rows:
            if not isinstance(row, list) or not all(
                isinstance(column, str) for column in row
            ):
                raise SpecificationError(
                    f"Entry '{key}' has a patch that is not a list of values: {row!r}"
                )
            spec_rows.append(list(row))
        spec[key] = spec_rows

    return spec


def load_patch_yaml(path: str | Path) -> PatchSpec:
    """
    Read and parse a patch file.

    Raises:
        SpecificationError: If the file is not a valid patch mapping
        OSError: If the file cannot be read
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except UnicodeDecodeError as e:
        raise SpecificationError(f"Invalid patch YAML: {e}") from e
    return parse_patch_yaml(text)
