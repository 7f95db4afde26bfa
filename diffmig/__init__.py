"""
diffmig - Registry Migration Comparison

Compares two clinical data exports of a registry, produced by two
successive migrations of the same records, and reports every structural
and value-level difference between them.
"""

from .engine import MigrationDiffEngine, lockstep, compare
from .differ import Differ, diff
from .models import (
    CompareConfig,
    ComparisonReport,
    PairResult,
    Difference,
    DiffLevel,
    DiffType,
    Side,
    GateResponse,
    CDE,
    CDEValue,
    ValueKind,
    FileRef,
    Section,
    SectionLayout,
    Form,
    ClinicalRecord,
    RecordKind,
    PatientSlice,
)
from .reader import ArrayReader, read_array, iter_export
from .builder import RecordBuilder, decode_cde_value, iter_records, iter_rows
from .slices import PatientSliceAssembler, assemble_slices
from .schema import RegistrySchema
from .validator import SchemaValidator, ValidationReport, ValidationFinding, FindingType
from .runner import DiffMigRunner

__version__ = "0.1.0"
__all__ = [
    # Engine
    "MigrationDiffEngine",
    "CompareConfig",
    "lockstep",
    "compare",
    # Diffing
    "Differ",
    "diff",
    "Difference",
    "DiffLevel",
    "DiffType",
    "Side",
    # Reports
    "ComparisonReport",
    "PairResult",
    "GateResponse",
    # Record model
    "CDE",
    "CDEValue",
    "ValueKind",
    "FileRef",
    "Section",
    "SectionLayout",
    "Form",
    "ClinicalRecord",
    "RecordKind",
    "PatientSlice",
    # Reading and building
    "ArrayReader",
    "read_array",
    "iter_export",
    "RecordBuilder",
    "decode_cde_value",
    "iter_records",
    "iter_rows",
    "PatientSliceAssembler",
    "assemble_slices",
    # Schema validation
    "RegistrySchema",
    "SchemaValidator",
    "ValidationReport",
    "ValidationFinding",
    "FindingType",
    # Runner
    "DiffMigRunner",
]
