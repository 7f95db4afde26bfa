"""Builds typed clinical records from export rows."""

from __future__ import annotations

import json
import logging
import math
from collections import Counter
from typing import Any, Iterable, Iterator, Optional

from .exceptions import (
    CDEValueError,
    DuplicateCodeError,
    InvalidFieldError,
    MissingFieldError,
    RecordStructureError,
)
from .jsonpath_utils import JSONPathMatcher
from .models import (
    CDE,
    CDEValue,
    ClinicalRecord,
    CompareConfig,
    Form,
    RecordKind,
    Section,
    SectionLayout,
    ShapeFingerprint,
)
from .validator import SchemaValidator

logger = logging.getLogger(__name__)


def _is_type(value: Any, expected: type) -> bool:
    # bool is an int subclass but never a valid id
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


def _as_object(value: Any, level: str) -> dict:
    if not isinstance(value, dict):
        raise RecordStructureError(f"Invalid {level}: not an object", level, value)
    return value


def _require(obj: dict, key: str, expected: type, level: str) -> Any:
    """Get a required key, checking the type of its value."""
    if key not in obj:
        raise MissingFieldError(key, level)
    value = obj[key]
    if not _is_type(value, expected):
        raise InvalidFieldError(key, level, value)
    return value


def _check_unique(names: list[str], mapping: dict, level: str):
    """A mapping smaller than the list it was built from means repeated codes."""
    if len(mapping) != len(names):
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        raise DuplicateCodeError(level, duplicates)


def decode_cde_value(code: str, value: Any) -> CDEValue:
    """
    Decode the raw value of a CDE.

    Arrays are ranges of strings, their order isn't kept. Objects are file
    references, either with a numeric `django_file_id` or with the string
    `gridfs_file_id` of legacy storage (file id 0). Numbers that don't fit
    a finite float are rejected.
    """
    if value is None:
        return CDEValue.null()
    if isinstance(value, bool):
        return CDEValue.boolean(value)
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            raise CDEValueError(code, value)
        if not math.isfinite(number):
            raise CDEValueError(code, value)
        return CDEValue.number(number)
    if isinstance(value, str):
        return CDEValue.string(value)
    if isinstance(value, list):
        if not all(isinstance(item, str) for item in value):
            raise CDEValueError(code, value)
        return CDEValue.range(value)
    if isinstance(value, dict):
        file_name = value.get("file_name")
        if isinstance(file_name, str):
            django_file_id = value.get("django_file_id")
            if _is_type(django_file_id, int):
                return CDEValue.file(file_name, django_file_id)
            if isinstance(value.get("gridfs_file_id"), str):
                return CDEValue.file(file_name, 0)
    raise CDEValueError(code, value)


def shape_fingerprint(record: ClinicalRecord) -> ShapeFingerprint:
    """The set of form names present in a record."""
    return record.fingerprint


class RecordBuilder:
    """
    Converts parsed export rows into ClinicalRecords.

    Rows look like:

        {"pk": 1, "fields": {"django_id": 7, "collection": "cdes", "data": {...}}}

    Extraction is strict, every missing or mistyped key raises an error
    naming the key and where it was expected. Rows of other collections
    than "cdes" and "history" are skipped.
    """

    def __init__(self, forms_paths: Optional[dict] = None):
        paths = dict(CompareConfig().forms_paths)
        paths.update(forms_paths or {})
        self._forms_segments = {
            RecordKind(tag): JSONPathMatcher.segments(path)
            for tag, path in paths.items()
        }

    def build(self, value: Any) -> Optional[ClinicalRecord]:
        """
        Build a record from one export row.

        Returns:
            The record, or None when the row's collection isn't modelled
        """
        row = _as_object(value, "clinical datum")
        record_id = _require(row, "pk", int, "clinical datum")
        fields = _require(row, "fields", dict, "clinical datum")
        patient = _require(fields, "django_id", int, "fields")
        collection = _require(fields, "collection", str, "fields")

        try:
            kind = RecordKind(collection)
        except ValueError:
            logger.debug("Skipping clinical datum %s of collection %s", record_id, collection)
            return None

        data = _require(fields, "data", dict, "fields")
        forms = self._build_forms(self._locate_forms(data, kind))

        return ClinicalRecord(id=record_id, patient=patient, kind=kind, forms=forms)

    def _locate_forms(self, data: dict, kind: RecordKind) -> list:
        """Follow the forms path of the record kind, naming the first missing step."""
        segments = self._forms_segments[kind]
        parent = "data"
        value: Any = data

        for depth, segment in enumerate(segments, start=1):
            if not isinstance(value, dict):
                raise InvalidFieldError(parent, "data", value)
            matches = JSONPathMatcher.find_values(data, JSONPathMatcher.join(segments[:depth]))
            if not matches:
                raise MissingFieldError(segment, parent)
            value = matches[0]
            if depth < len(segments):
                parent = segment

        if not isinstance(value, list):
            raise InvalidFieldError(segments[-1] if segments else "forms", parent, value)
        return value

    def _build_forms(self, entries: list) -> dict[str, Form]:
        forms = {}
        names = []
        for entry in entries:
            form = _as_object(entry, "form")
            name = _require(form, "name", str, "form")
            sections = self._build_sections(_require(form, "sections", list, f"form {name}"))
            names.append(name)
            forms[name] = Form(name=name, sections=sections)

        _check_unique(names, forms, "forms")
        return forms

    def _build_sections(self, entries: list) -> dict[str, Section]:
        sections = {}
        codes = []
        for entry in entries:
            section = _as_object(entry, "section")
            code = _require(section, "code", str, "section")
            level = f"section {code}"
            allow_multiple = _require(section, "allow_multiple", bool, level)
            raw_cdes = _require(section, "cdes", list, level)

            if allow_multiple:
                instances = []
                for instance in raw_cdes:
                    if not isinstance(instance, list):
                        raise InvalidFieldError("cdes list", level, instance)
                    instances.append(self._build_cdes(instance, code))
                cdes = instances
                layout = SectionLayout.MULTIPLE
            else:
                cdes = self._build_cdes(raw_cdes, code)
                layout = SectionLayout.SINGLE

            codes.append(code)
            sections[code] = Section(code=code, allow_multiple=allow_multiple, layout=layout, cdes=cdes)

        _check_unique(codes, sections, "sections")
        return sections

    def _build_cdes(self, entries: list, section_code: str) -> dict[str, CDE]:
        cdes = {}
        codes = []
        level = f"cde of section {section_code}"
        for entry in entries:
            cde = _as_object(entry, level)
            code = _require(cde, "code", str, level)
            if "value" not in cde:
                raise MissingFieldError("value", f"cde {code}")
            codes.append(code)
            cdes[code] = CDE(code=code, value=decode_cde_value(code, cde["value"]))

        _check_unique(codes, cdes, "CDEs")
        return cdes


def iter_rows(
    values: Iterable[Any],
    builder: RecordBuilder,
    validator: Optional[SchemaValidator] = None,
    cdes_only: bool = False
) -> Iterator[Optional[ClinicalRecord]]:
    """
    Map export rows to records, one result per row.

    Skipped rows, and history rows when `cdes_only` is set, come out as
    None. Structural errors are logged with the offending row and re-raised.
    """
    for value in values:
        try:
            record = builder.build(value)
        except RecordStructureError as e:
            logger.error("Error parsing clinical datum: %s", e)
            logger.debug("Original value: %s", json.dumps(value, indent=2, default=str))
            raise

        if record is None:
            yield None
            continue

        if validator:
            report = validator.validate(record)
            for finding in report.findings:
                logger.warning("Clinical datum %s doesn't match definition: %s", record.id, finding.message)

        if cdes_only and record.kind != RecordKind.CURRENT_DATA:
            yield None
            continue

        yield record


def iter_records(
    values: Iterable[Any],
    builder: RecordBuilder,
    validator: Optional[SchemaValidator] = None,
    cdes_only: bool = False
) -> Iterator[ClinicalRecord]:
    """Map export rows to records, dropping skipped rows."""
    for record in iter_rows(values, builder, validator, cdes_only):
        if record is not None:
            yield record
