"""Custom exceptions for diffmig."""

from typing import Any


def _describe(field: str, level: str) -> str:
    return f"{field} in {level}" if level else field


class DiffMigError(Exception):
    """Base exception for diffmig errors."""
    pass


class MalformedElementError(DiffMigError):
    """Raised when one accumulated array element is not valid JSON."""
    def __init__(self, line: int, reason: str):
        super().__init__(f"Failed parsing JSON array entry ending at line {line}: {reason}")
        self.line = line
        self.reason = reason


class RecordStructureError(DiffMigError):
    """Raised when a clinical record doesn't have the expected structure."""
    def __init__(self, message: str, level: str, value: Any = None):
        super().__init__(message)
        self.message = message
        self.level = level
        self.value = value


class MissingFieldError(RecordStructureError):
    """Raised when a required key is absent."""
    def __init__(self, field: str, level: str, value: Any = None):
        super().__init__(f"Missing {_describe(field, level)}", level, value)
        self.field = field


class InvalidFieldError(RecordStructureError):
    """Raised when a required key holds a value of the wrong type."""
    def __init__(self, field: str, level: str, value: Any = None):
        super().__init__(f"Invalid {_describe(field, level)}: {value!r}", level, value)
        self.field = field


class DuplicateCodeError(RecordStructureError):
    """Raised when a list of forms, sections or CDEs repeats a name or code."""
    def __init__(self, level: str, codes: list):
        super().__init__(f"List of {level} contains duplicates: {', '.join(codes)}", level, codes)
        self.codes = codes


class CDEValueError(RecordStructureError):
    """Raised when a CDE value has none of the known shapes."""
    def __init__(self, code: str, value: Any):
        super().__init__(f"Invalid cde value for {code}: {value!r}", "cde", value)
        self.code = code


class SliceMembershipError(DiffMigError):
    """Raised when a record is added to a patient slice it can't belong to."""
    def __init__(self, patient: int, record_id: int, reason: str):
        super().__init__(f"Record {record_id} can't join slice of patient {patient}: {reason}")
        self.patient = patient
        self.record_id = record_id
        self.reason = reason


class SequenceLengthError(DiffMigError):
    """Raised when the two compared sequences don't have the same length."""
    def __init__(self, exhausted: str, position: int):
        super().__init__(f"{exhausted.capitalize()} ran out of entries after {position} pairs")
        self.exhausted = exhausted
        self.position = position


class SkipMismatchError(DiffMigError):
    """Raised when a row is skipped on one side but modelled on the other."""
    def __init__(self, position: int, skipped: str):
        super().__init__(f"Row {position} was skipped in {skipped} only")
        self.position = position
        self.skipped = skipped


class ArchiveLayoutError(DiffMigError):
    """Raised when a zip export doesn't hold the clinical data file where expected."""
    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.message = message
        self.path = path


class SchemaParseError(DiffMigError):
    """Raised when a registry schema definition can't be parsed."""
    def __init__(self, message: str, entry: int = None, reason: str = None):
        super().__init__(message)
        self.message = message
        self.entry = entry
        self.reason = reason
