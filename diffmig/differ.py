"""Structural diffing of clinical record trees."""

from __future__ import annotations

from typing import Any, Callable, Optional

from .models import (
    CDE,
    ClinicalRecord,
    DiffLevel,
    DiffType,
    Difference,
    Form,
    PatientSlice,
    Section,
    SectionLayout,
    Side,
    ValueKind,
    format_fingerprint,
)

# Kinds without a payload, equal as soon as the kinds match
_UNIT_KINDS = (ValueKind.NULL, ValueKind.EMPTY_STRING, ValueKind.EMPTY_RANGE)


class Differ:
    """
    Compares two values of the same type and reports every difference.

    Handles CDEs, Sections, Forms, ClinicalRecords and PatientSlices. Neither
    operand is modified. `diff` returns None exactly when both values are
    equal, recursively; otherwise the complete list of differences, in the
    insertion order of the old (left) mappings followed by entries only
    present in the new (right) ones.

    Repeated section instances are compared by position, so reordering them
    is reported as a difference.
    """

    def __init__(self, tolerance: float = 0.01):
        self.tolerance = tolerance

    def diff(self, old: Any, new: Any) -> Optional[list[Difference]]:
        diffs = self._diff(old, new)
        return diffs or None

    def _diff(self, old: Any, new: Any) -> list[Difference]:
        if type(old) is not type(new):
            raise TypeError(f"Can't diff {type(old).__name__} against {type(new).__name__}")

        if isinstance(old, CDE):
            return self._diff_cde(old, new)
        elif isinstance(old, Section):
            return self._diff_section(old, new)
        elif isinstance(old, Form):
            return self._diff_form(old, new)
        elif isinstance(old, ClinicalRecord):
            return self._diff_record(old, new)
        elif isinstance(old, PatientSlice):
            return self._diff_slice(old, new)

        raise TypeError(f"Can't diff values of type {type(old).__name__}")

    def diff_mapping(
        self,
        old: dict,
        new: dict,
        level: DiffLevel,
        compare: Optional[Callable[[Any, Any], Optional[list[Difference]]]] = None,
        format_key: Callable[[Any], str] = str
    ) -> list[Difference]:
        """
        Diff two mappings key by key.

        Keys only in `old` are reported as LEFT_ONLY, keys only in `new` as
        RIGHT_ONLY, values under shared keys are compared with `compare`
        (`diff` by default) and their differences flattened into the result.
        """
        compare = compare or self.diff
        diffs = []

        for key, old_item in old.items():
            if key not in new:
                diffs.append(Difference(
                    level=level,
                    key=format_key(key),
                    type=DiffType.MISSING,
                    old_value=old_item,
                    side=Side.LEFT_ONLY
                ))
                continue
            diffs.extend(compare(old_item, new[key]) or [])

        for key, new_item in new.items():
            if key not in old:
                diffs.append(Difference(
                    level=level,
                    key=format_key(key),
                    type=DiffType.MISSING,
                    new_value=new_item,
                    side=Side.RIGHT_ONLY
                ))

        return diffs

    def _by_variant(
        self,
        level: DiffLevel,
        key: str,
        old_tag: Any,
        new_tag: Any,
        old_value: Any,
        new_value: Any,
        compare: Callable[[], list[Difference]]
    ) -> list[Difference]:
        """Report a single VARIANT difference when tags differ, run `compare` otherwise."""
        if old_tag != new_tag:
            return [Difference(level, key, DiffType.VARIANT, old_value, new_value)]
        return compare()

    def _equality(self, level: DiffLevel, key: str, old: Any, new: Any) -> list[Difference]:
        if old != new:
            return [Difference(level, key, DiffType.EQUALITY, old, new)]
        return []

    def _diff_cde(self, old: CDE, new: CDE) -> list[Difference]:
        return self._by_variant(
            DiffLevel.CDE, old.code,
            old.value.kind, new.value.kind,
            old.value, new.value,
            lambda: self._diff_cde_payload(old, new)
        )

    def _diff_cde_payload(self, old: CDE, new: CDE) -> list[Difference]:
        kind = old.value.kind
        if kind in _UNIT_KINDS:
            return []
        if kind == ValueKind.NUMBER:
            if abs(old.value.payload - new.value.payload) > self.tolerance:
                return [Difference(DiffLevel.CDE, old.code, DiffType.EQUALITY, old.value, new.value)]
            return []
        return self._equality(DiffLevel.CDE, old.code, old.value, new.value)

    def _diff_section(self, old: Section, new: Section) -> list[Difference]:
        diffs = []
        if old.code != new.code:
            diffs.append(Difference(DiffLevel.SECTION, old.code, DiffType.CODE, old.code, new.code))
        if old.allow_multiple != new.allow_multiple:
            diffs.append(Difference(
                DiffLevel.SECTION, old.code, DiffType.ALLOW_MULTIPLE,
                old.allow_multiple, new.allow_multiple
            ))
        diffs.extend(self._by_variant(
            DiffLevel.SECTION, old.code,
            old.layout, new.layout,
            old.layout, new.layout,
            lambda: self._diff_section_cdes(old, new)
        ))
        return diffs

    def _diff_section_cdes(self, old: Section, new: Section) -> list[Difference]:
        if old.layout == SectionLayout.SINGLE:
            children = self.diff_mapping(old.cdes, new.cdes, DiffLevel.CDE)
            if children:
                return [Difference(DiffLevel.SECTION, old.code, DiffType.CDES, children=children)]
            return []

        diffs = []
        for index in range(max(len(old.cdes), len(new.cdes))):
            key = f"{old.code}[{index}]"
            if index >= len(new.cdes):
                diffs.append(Difference(
                    DiffLevel.SECTION, key, DiffType.MISSING,
                    old_value=old.cdes[index], side=Side.LEFT_ONLY
                ))
            elif index >= len(old.cdes):
                diffs.append(Difference(
                    DiffLevel.SECTION, key, DiffType.MISSING,
                    new_value=new.cdes[index], side=Side.RIGHT_ONLY
                ))
            else:
                children = self.diff_mapping(old.cdes[index], new.cdes[index], DiffLevel.CDE)
                if children:
                    diffs.append(Difference(DiffLevel.SECTION, key, DiffType.CDES, children=children))
        return diffs

    def _diff_form(self, old: Form, new: Form) -> list[Difference]:
        diffs = []
        if old.name != new.name:
            diffs.append(Difference(DiffLevel.FORM, old.name, DiffType.NAME, old.name, new.name))

        children = self.diff_mapping(old.sections, new.sections, DiffLevel.SECTION)
        if children:
            diffs.append(Difference(DiffLevel.FORM, old.name, DiffType.SECTIONS, children=children))
        return diffs

    def _diff_record(self, old: ClinicalRecord, new: ClinicalRecord) -> list[Difference]:
        # Record ids differ between migrations, they are only displayed
        key = format_fingerprint(old.fingerprint)
        diffs = []
        if old.patient != new.patient:
            diffs.append(Difference(DiffLevel.RECORD, key, DiffType.PATIENT, old.patient, new.patient))
        if old.kind != new.kind:
            diffs.append(Difference(DiffLevel.RECORD, key, DiffType.KIND, old.kind, new.kind))

        children = self.diff_mapping(old.forms, new.forms, DiffLevel.FORM)
        if children:
            diffs.append(Difference(DiffLevel.RECORD, key, DiffType.FORMS, children=children))
        return diffs

    def _diff_slice(self, old: PatientSlice, new: PatientSlice) -> list[Difference]:
        key = f"{old.patient} (records {','.join(str(i) for i in old.ids)})"
        diffs = []
        if old.patient != new.patient:
            diffs.append(Difference(DiffLevel.SLICE, key, DiffType.PATIENT, old.patient, new.patient))

        children = self.diff_mapping(
            old.records, new.records, DiffLevel.RECORD, format_key=format_fingerprint
        )
        if children:
            diffs.append(Difference(DiffLevel.SLICE, key, DiffType.RECORDS, children=children))
        return diffs


def diff(old: Any, new: Any, tolerance: float = 0.01) -> Optional[list[Difference]]:
    """Convenience function to diff two values."""
    return Differ(tolerance).diff(old, new)
