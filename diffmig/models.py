"""Data models for diffmig."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import SliceMembershipError


class ValueKind(Enum):
    NULL = "NULL"
    BOOLEAN = "BOOLEAN"
    EMPTY_STRING = "EMPTY_STRING"
    STRING = "STRING"
    NUMBER = "NUMBER"
    EMPTY_RANGE = "EMPTY_RANGE"
    RANGE = "RANGE"
    FILE = "FILE"


class RecordKind(Enum):
    """Clinical record collections, valued by their export collection tag."""
    HISTORY = "history"
    CURRENT_DATA = "cdes"


class SectionLayout(Enum):
    SINGLE = "SINGLE"
    MULTIPLE = "MULTIPLE"


class DiffLevel(Enum):
    CDE = "CDE"
    SECTION = "SECTION"
    FORM = "FORM"
    RECORD = "RECORD"
    SLICE = "SLICE"


class DiffType(Enum):
    MISSING = "MISSING"
    VARIANT = "VARIANT"
    EQUALITY = "EQUALITY"
    CODE = "CODE"
    NAME = "NAME"
    ALLOW_MULTIPLE = "ALLOW_MULTIPLE"
    PATIENT = "PATIENT"
    KIND = "KIND"
    # Grouping entries, carrying the differences of their children
    CDES = "CDES"
    SECTIONS = "SECTIONS"
    FORMS = "FORMS"
    RECORDS = "RECORDS"


class Side(Enum):
    LEFT_ONLY = "LEFT_ONLY"
    RIGHT_ONLY = "RIGHT_ONLY"


class GateResponse(Enum):
    """Answer of the confirmation gate consulted after each differing pair."""
    PROCEED = "PROCEED"
    PROCEED_ALL = "PROCEED_ALL"
    ABORT = "ABORT"


ShapeFingerprint = frozenset


def format_fingerprint(fingerprint: ShapeFingerprint) -> str:
    """Format a shape fingerprint for display."""
    return "{" + ", ".join(sorted(fingerprint)) + "}"


@dataclass(frozen=True)
class FileRef:
    """Reference to an uploaded file stored by the registry."""
    file_name: str
    file_id: int

    def __str__(self):
        return f"{self.file_name} (#{self.file_id})"


@dataclass(frozen=True)
class CDEValue:
    """
    Value of a coded data element.

    Exactly one kind is set. Payload is None for NULL, EMPTY_STRING and
    EMPTY_RANGE, a bool, str, float, frozenset of str or FileRef otherwise.
    Use the constructors below rather than building instances directly,
    they apply the empty collapsing rules.
    """
    kind: ValueKind
    payload: Any = None

    @classmethod
    def null(cls) -> 'CDEValue':
        return cls(ValueKind.NULL)

    @classmethod
    def boolean(cls, value: bool) -> 'CDEValue':
        return cls(ValueKind.BOOLEAN, bool(value))

    @classmethod
    def string(cls, value: str) -> 'CDEValue':
        if value == "":
            return cls(ValueKind.EMPTY_STRING)
        return cls(ValueKind.STRING, value)

    @classmethod
    def number(cls, value: float) -> 'CDEValue':
        return cls(ValueKind.NUMBER, float(value))

    @classmethod
    def range(cls, values) -> 'CDEValue':
        values = frozenset(values)
        if not values:
            return cls(ValueKind.EMPTY_RANGE)
        return cls(ValueKind.RANGE, values)

    @classmethod
    def file(cls, file_name: str, file_id: int) -> 'CDEValue':
        return cls(ValueKind.FILE, FileRef(file_name, file_id))

    def to_plain(self) -> Any:
        """Convert to a JSON-friendly value."""
        if self.kind == ValueKind.EMPTY_STRING:
            return ""
        if self.kind == ValueKind.EMPTY_RANGE:
            return []
        if self.kind == ValueKind.RANGE:
            return sorted(self.payload)
        if self.kind == ValueKind.FILE:
            return {"file_name": self.payload.file_name, "file_id": self.payload.file_id}
        return self.payload

    def __str__(self):
        if self.kind == ValueKind.NULL:
            return "null"
        return f"{self.kind.value.lower()}({self.to_plain()!r})"


@dataclass(frozen=True)
class CDE:
    """A single coded data element."""
    code: str
    value: CDEValue


@dataclass(frozen=True)
class Section:
    """
    A form section.

    `cdes` is a mapping of code to CDE when the layout is SINGLE, and a list
    of such mappings (one per repeated instance) when it's MULTIPLE.
    """
    code: str
    allow_multiple: bool
    layout: SectionLayout
    cdes: Any

    def __post_init__(self):
        expected = SectionLayout.MULTIPLE if self.allow_multiple else SectionLayout.SINGLE
        if self.layout != expected:
            raise ValueError(
                f"Section {self.code} has allow_multiple={self.allow_multiple} "
                f"but {self.layout.value} layout"
            )

    @property
    def instances(self) -> list[dict]:
        """All CDE mappings of the section, regardless of layout."""
        if self.layout == SectionLayout.MULTIPLE:
            return list(self.cdes)
        return [self.cdes]


@dataclass(frozen=True)
class Form:
    name: str
    sections: dict


@dataclass(frozen=True)
class ClinicalRecord:
    """One clinical data row of an export, built once and never changed."""
    id: int
    patient: int
    kind: RecordKind
    forms: dict

    @property
    def fingerprint(self) -> ShapeFingerprint:
        return ShapeFingerprint(self.forms.keys())


@dataclass
class PatientSlice:
    """
    The unit of comparison: one patient's records, keyed by shape fingerprint.

    Slices only grow by insertion. Callers check `can_add` first, `add`
    refuses records that would break the slice invariants.
    """
    patient: int
    records: dict = field(default_factory=dict)

    def can_add(self, record: ClinicalRecord) -> bool:
        return record.patient == self.patient and record.fingerprint not in self.records

    def add(self, record: ClinicalRecord):
        if record.patient != self.patient:
            raise SliceMembershipError(self.patient, record.id, f"belongs to patient {record.patient}")
        fingerprint = record.fingerprint
        if fingerprint in self.records:
            raise SliceMembershipError(
                self.patient, record.id,
                f"fingerprint {format_fingerprint(fingerprint)} already used by record "
                f"{self.records[fingerprint].id}"
            )
        self.records[fingerprint] = record

    @property
    def ids(self) -> list[int]:
        return sorted(record.id for record in self.records.values())


def _plain(value: Any) -> Any:
    """Convert a difference operand to a JSON-friendly value."""
    if isinstance(value, CDEValue):
        return value.to_plain()
    if isinstance(value, CDE):
        return {"code": value.code, "value": value.value.to_plain()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Section):
        return {"code": value.code, "allow_multiple": value.allow_multiple}
    if isinstance(value, Form):
        return {"name": value.name, "sections": sorted(value.sections)}
    if isinstance(value, ClinicalRecord):
        return {"id": value.id, "patient": value.patient, "kind": value.kind.value,
                "forms": sorted(value.forms)}
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


@dataclass
class Difference:
    """
    A single difference found while comparing two values.

    Grouping entries (CDES, SECTIONS, FORMS, RECORDS) hold the differences of
    their children, every other entry is a leaf. MISSING entries carry the
    side the value is present on, with the other operand set to None.
    """
    level: DiffLevel
    key: str
    type: DiffType
    old_value: Any = None
    new_value: Any = None
    side: Optional[Side] = None
    children: list['Difference'] = field(default_factory=list)

    def count(self) -> int:
        """Number of leaf differences in this tree."""
        if self.children:
            return sum(child.count() for child in self.children)
        return 1

    @property
    def message(self) -> str:
        if self.type == DiffType.MISSING:
            present = "old" if self.side == Side.LEFT_ONLY else "new"
            return f"{self.level.value.lower()} {self.key} only present in {present}"
        if self.children:
            return f"{self.level.value.lower()} {self.key}: {self.count()} differences in {self.type.value.lower()}"
        return (f"{self.level.value.lower()} {self.key}: {self.type.value.lower()} "
                f"{_format(self.old_value)} != {_format(self.new_value)}")

    def render(self, depth: int = 0) -> list[str]:
        """Render the tree as indented text lines."""
        lines = ["  " * depth + self.message]
        for child in self.children:
            lines.extend(child.render(depth + 1))
        return lines

    def to_dict(self) -> dict:
        result = {
            "level": self.level.value,
            "key": self.key,
            "type": self.type.value,
        }
        if self.side:
            result["side"] = self.side.value
        if self.children:
            result["children"] = [c.to_dict() for c in self.children]
        else:
            result["old_value"] = _plain(self.old_value)
            result["new_value"] = _plain(self.new_value)
        return result


def _format(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, CDEValue):
        return str(value)
    return repr(value)


def count_differences(diffs: Optional[list[Difference]]) -> int:
    """Total leaf count of a difference list, 0 for no differences."""
    return sum(d.count() for d in diffs or [])


@dataclass
class CompareConfig:
    """Configuration for a comparison run."""
    # Indentation of the closing brace terminating each array element
    indent: int = 4
    tolerance: float = 0.01
    cdes_only: bool = False
    prompt: bool = True
    # JSONPath of the forms list relative to `fields.data`, per collection tag
    forms_paths: dict = field(default_factory=lambda: {
        RecordKind.CURRENT_DATA.value: "$.forms",
        RecordKind.HISTORY.value: "$.record.forms",
    })

    @classmethod
    def from_dict(cls, config: dict) -> 'CompareConfig':
        defaults = cls()
        forms_paths = dict(defaults.forms_paths)
        forms_paths.update(config.get('forms_paths') or {})
        unknown = set(forms_paths) - {kind.value for kind in RecordKind}
        if unknown:
            raise ValueError(f"Unknown collections in forms_paths: {', '.join(sorted(unknown))}")

        return cls(
            indent=int(config.get('indent', defaults.indent)),
            tolerance=float(config.get('tolerance', defaults.tolerance)),
            cdes_only=bool(config.get('cdes_only', defaults.cdes_only)),
            prompt=bool(config.get('prompt', defaults.prompt)),
            forms_paths=forms_paths,
        )

    @classmethod
    def from_file(cls, path: str) -> 'CompareConfig':
        """Load configuration from a YAML or JSON file."""
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r') as f:
            content = f.read()

        try:
            config = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse config file: {e}")

        if not isinstance(config, dict):
            raise ValueError(f"Config file must hold a mapping: {config_path}")
        return cls.from_dict(config)


@dataclass
class PairResult:
    """Comparison outcome of one positional pair."""
    position: int
    old: Any
    new: Any
    differences: Optional[list[Difference]] = None

    @property
    def identical(self) -> bool:
        return not self.differences

    @property
    def difference_count(self) -> int:
        """Number of top-level differences of the pair."""
        return len(self.differences or [])

    @property
    def leaf_count(self) -> int:
        return count_differences(self.differences)


@dataclass
class ComparisonReport:
    """Summary of a whole comparison run."""
    pairs_compared: int = 0
    pairs_differing: int = 0
    total_differences: int = 0
    leaf_differences: int = 0
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "pairs_compared": self.pairs_compared,
            "pairs_differing": self.pairs_differing,
            "total_differences": self.total_differences,
            "leaf_differences": self.leaf_differences,
            "aborted": self.aborted,
        }
