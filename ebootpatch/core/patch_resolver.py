"""
EBOOT Patcher - Patch Resolver

Turns the generic patch mapping loaded from a patch file into the ordered
list of patch units to apply.

Top-level keys are either hash-conditioned entries ("PPU-<hash>", and
"SPU-<hash>" while filtering by hash) or named units. While filtering by
hash, named units are only registered so that the matching hash entry can
pull them in with Load rows:

    PPU-0123abcd...:
      - [ load, infinite_health ]
      - [ load, more_money, 0x100 ]   # shifted copy of the unit
    infinite_health:
      - [ be32, 0x0012B4C8, 0x60000000 ]

Entries are resolved in declaration order, so a Load can only refer to a
unit declared earlier in the file. A bad entry is reported and skipped
without affecting the others.
"""

from dataclasses import dataclass, field

from ..formats.patch_data import Patch, PatchType, PatchUnit
from ..formats.value_parser import (
    ParseError,
    parse_delta,
    parse_offset,
    parse_typed_value,
)

PPU_HASH_PREFIX = "PPU-"
SPU_HASH_PREFIX = "SPU-"


class PatchEntryError(ValueError):
    """Raised when a patch file entry is invalid and must be skipped."""

    pass


@dataclass
class ResolveResult:
    """Units to apply, plus the diagnostics reported while resolving."""

    units: list[PatchUnit] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def patch_count(self) -> int:
        return sum(len(unit.patches) for unit in self.units)


class PatchResolver:
    """
    Resolves a patch mapping into patch units.

    Usage:
        resolver = PatchResolver(hash_filter="PPU-0123...")
        result = resolver.resolve(load_patch_yaml("patch.yml"))
        for unit in result.units:
            ...
    """

    def __init__(
        self,
        hash_filter: str | None = None,
        name_filter: set[str] | list[str] | None = None,
        register_always: bool = False,
    ):
        """
        Configure a resolver.

        Args:
            hash_filter: Only apply the hash entry with exactly this key
            name_filter: Only consider named entries with these keys
            register_always: Also register named units for Load lookup when
                no hash filter is active (they are still applied directly)
        """
        self.hash_filter = hash_filter
        self.name_filter = set(name_filter) if name_filter is not None else None
        self.register_always = register_always

    def is_hash_entry(self, key: str) -> bool:
        """Check whether a top-level key is a hash-conditioned entry."""
        if key.startswith(PPU_HASH_PREFIX):
            return True
        return key.startswith(SPU_HASH_PREFIX) and self.hash_filter is not None

    def resolve(self, spec: dict[str, list[list[str]]]) -> ResolveResult:
        """
        Resolve all entries of a patch mapping.

        Args:
            spec: Mapping of top-level key to rows, in declaration order

        Returns:
            ResolveResult with the units to apply in order
        """
        result = ResolveResult()
        units_by_name: dict[str, PatchUnit] = {}
        keys = list(spec)

        for index, (key, rows) in enumerate(spec.items()):
            later_keys = set(keys[index + 1 :])

            if self.is_hash_entry(key):
                if key != self.hash_filter:
                    continue

                units = self._parse_entry(
                    key, rows, units_by_name, later_keys, result.diagnostics
                )
                if units is not None:
                    result.units.extend(units)
                continue

            if self.name_filter is not None and key not in self.name_filter:
                continue

            units = self._parse_entry(
                key, rows, units_by_name, later_keys, result.diagnostics
            )
            if not units:
                continue

            if len(units) > 1:
                _report(
                    result.diagnostics,
                    f"Warning: Patch unit {key} loads {len(units)} units, "
                    f"only {units[0].name} is used.",
                )

            if self.hash_filter is not None or self.register_always:
                units_by_name[key] = units[0]
            if self.hash_filter is None:
                result.units.append(units[0])

        return result

    def _parse_entry(
        self,
        key: str,
        rows: list[list[str]],
        units_by_name: dict[str, PatchUnit],
        later_keys: set[str],
        diagnostics: list[str],
    ) -> list[PatchUnit] | None:
        try:
            return self.parse_unit(key, rows, units_by_name, later_keys, diagnostics)
        except PatchEntryError as e:
            _report(diagnostics, f"Error: {e}")
            return None

    def parse_unit(
        self,
        key: str,
        rows: list[list[str]],
        units_by_name: dict[str, PatchUnit],
        later_keys: set[str] | None = None,
        diagnostics: list[str] | None = None,
    ) -> list[PatchUnit]:
        """
        Build the patch units of one entry.

        Patches are accumulated into a working unit named after the key. A
        Load row replaces the working unit with the referenced unit (or a
        shifted copy of it) and emits it; units in units_by_name are never
        modified.

        Args:
            key: Entry key
            rows: Entry rows of string columns
            units_by_name: Units registered by earlier entries
            later_keys: Keys declared after this entry (for diagnostics)
            diagnostics: List collecting non-fatal problems

        Returns:
            Emitted units in order

        Raises:
            PatchEntryError: If the entry is malformed
        """
        if diagnostics is None:
            diagnostics = []
        later_keys = later_keys or set()

        own_unit = PatchUnit(key)
        current = own_unit
        borrowed = False
        emitted: list[PatchUnit] = []

        for row in rows:
            if len(row) < 2:
                raise PatchEntryError(
                    f"Patch in patch unit is truncated. Skipping {key}!"
                )

            try:
                patch_type = PatchType.from_name(row[0])
            except ValueError:
                raise PatchEntryError(
                    f"Unknown patch type '{row[0]}'. Skipping {key}"
                ) from None

            if patch_type is PatchType.LOAD:
                loaded = self._load(row, units_by_name, later_keys, diagnostics)
                if loaded is None:
                    continue

                if current is own_unit and own_unit.patches:
                    _report(
                        diagnostics,
                        f"Warning: {len(own_unit.patches)} patch(es) in {key} "
                        f"before loading {row[1]} are discarded.",
                    )

                current, borrowed = loaded
                emitted.append(current)
                continue

            if len(row) < 3:
                raise PatchEntryError(
                    f"Patch in patch unit is missing its value. Skipping {key}!"
                )

            try:
                offset = parse_offset(row[1])
            except ParseError:
                raise PatchEntryError(
                    f"Unable to parse patch offset '{row[1]}'. Skipping {key}"
                ) from None

            try:
                value = parse_typed_value(patch_type, row[2])
            except ParseError:
                raise PatchEntryError(
                    f"Unable to parse {patch_type} patch value '{row[2]}'. Skipping {key}"
                ) from None

            if borrowed:
                # Copy on first write so the registered unit stays untouched
                copy = current.copy()
                index = _last_index(emitted, current)
                emitted[index] = copy
                current = copy
                borrowed = False

            current.patches.append(Patch(patch_type, offset, value))

        if _last_index(emitted, current) == -1:
            emitted.append(current)

        return emitted

    def _load(
        self,
        row: list[str],
        units_by_name: dict[str, PatchUnit],
        later_keys: set[str],
        diagnostics: list[str],
    ) -> tuple[PatchUnit, bool] | None:
        """
        Resolve a Load row.

        Returns:
            (unit, borrowed) where borrowed is True if the unit is the
            registered one rather than a shifted copy, or None if the row
            is skipped
        """
        name = row[1]
        referenced = units_by_name.get(name)
        if referenced is None:
            if name in later_keys:
                _report(
                    diagnostics,
                    f"Error: Could not find patch unit {name}. It is declared "
                    "later in the file; forward references are not supported.",
                )
            else:
                _report(diagnostics, f"Error: Could not find patch unit {name}")
            return None

        if len(row) < 3:
            return referenced, True

        try:
            delta = parse_delta(row[2])
        except ParseError:
            _report(
                diagnostics,
                f"Error: Failed to parse patch address offset '{row[2]}' for {name}",
            )
            return None

        return referenced.shifted(delta), False


def _last_index(units: list[PatchUnit], unit: PatchUnit) -> int:
    """Index of the last occurrence of unit (by identity), or -1."""
    for index in range(len(units) - 1, -1, -1):
        if units[index] is unit:
            return index
    return -1


def _report(diagnostics: list[str], message: str):
    print(message)
    diagnostics.append(message)


def resolve_patch_units(
    spec: dict[str, list[list[str]]],
    hash_filter: str | None = None,
    name_filter: set[str] | list[str] | None = None,
) -> list[PatchUnit]:
    """
    Resolve a patch mapping into the ordered units to apply.

    Args:
        spec: Mapping of top-level key to rows, in declaration order
        hash_filter: Only apply the hash entry with exactly this key
        name_filter: Only consider named entries with these keys

    Returns:
        Patch units in application order
    """
    return PatchResolver(hash_filter, name_filter).resolve(spec).units
