"""Main comparison engine for diffmig."""

from __future__ import annotations

import logging
from itertools import zip_longest
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional

from .builder import RecordBuilder, iter_records, iter_rows
from .differ import Differ
from .exceptions import SequenceLengthError, SkipMismatchError
from .models import (
    CompareConfig,
    ComparisonReport,
    GateResponse,
    PairResult,
)
from .reader import read_array
from .schema import RegistrySchema
from .slices import PatientSliceAssembler, assemble_slices
from .validator import SchemaValidator

logger = logging.getLogger(__name__)

_EXHAUSTED = object()

ConfirmationGate = Callable[[PairResult], GateResponse]


def lockstep(old: Iterable[Any], new: Iterable[Any]) -> Iterator[tuple[int, Any, Any]]:
    """
    Pair two sequences by position.

    Both sequences must enumerate the same logical rows in the same order,
    so running out of one before the other is fatal.
    """
    for position, (old_item, new_item) in enumerate(zip_longest(old, new, fillvalue=_EXHAUSTED)):
        if new_item is _EXHAUSTED:
            raise SequenceLengthError("new", position)
        if old_item is _EXHAUSTED:
            raise SequenceLengthError("old", position)
        yield position, old_item, new_item


class MigrationDiffEngine:
    """
    Compares two registry exports pulled from byte streams.

    Pipeline per export, one element at a time:

    1. Incremental reading of the export array
    2. Record building (and optional schema validation)
    3. Patient slice assembly
    4. Structural diffing of positionally paired slices
    """

    def __init__(self, config: Optional[CompareConfig] = None):
        """
        Initialize the engine.

        Args:
            config: Comparison configuration (uses defaults if not provided)
        """
        self.config = config or CompareConfig()
        self.builder = RecordBuilder(self.config.forms_paths)
        self.differ = Differ(self.config.tolerance)

    def slices(
        self,
        stream: BinaryIO,
        validator: Optional[SchemaValidator] = None
    ) -> PatientSliceAssembler:
        """Lazily read the patient slices of one export."""
        values = read_array(stream, self.config.indent)
        records = iter_records(values, self.builder, validator, self.config.cdes_only)
        return assemble_slices(records)

    def pairs(
        self,
        old_stream: BinaryIO,
        new_stream: BinaryIO,
        schema: Optional[RegistrySchema] = None
    ) -> Iterator[PairResult]:
        """Compare the two exports slice by slice."""
        validator = SchemaValidator(schema) if schema else None
        old_slices = self.slices(old_stream, validator)
        new_slices = self.slices(new_stream, validator)

        try:
            for position, old, new in lockstep(old_slices, new_slices):
                yield PairResult(position, old, new, self.differ.diff(old, new))
        finally:
            # Release the readers while their streams are still open
            old_slices.close()
            new_slices.close()

    def row_pairs(
        self,
        old_stream: BinaryIO,
        new_stream: BinaryIO,
        schema: Optional[RegistrySchema] = None
    ) -> Iterator[PairResult]:
        """
        Compare the two exports row by row, without slice grouping.

        A row skipped in one export must be skipped in the other as well.
        """
        validator = SchemaValidator(schema) if schema else None
        old_rows = iter_rows(read_array(old_stream, self.config.indent), self.builder, validator,
                             self.config.cdes_only)
        new_rows = iter_rows(read_array(new_stream, self.config.indent), self.builder, validator,
                             self.config.cdes_only)

        try:
            for position, old, new in lockstep(old_rows, new_rows):
                if old is None and new is None:
                    continue
                if old is None or new is None:
                    raise SkipMismatchError(position, "old" if old is None else "new")
                yield PairResult(position, old, new, self.differ.diff(old, new))
        finally:
            old_rows.close()
            new_rows.close()

    def run(
        self,
        old_stream: BinaryIO,
        new_stream: BinaryIO,
        gate: Optional[ConfirmationGate] = None,
        schema: Optional[RegistrySchema] = None,
        on_difference: Optional[Callable[[PairResult], None]] = None,
        by_row: bool = False
    ) -> ComparisonReport:
        """
        Compare two exports and total their differences.

        Args:
            old_stream: Export of the earlier migration
            new_stream: Export of the later migration
            gate: Consulted after every differing pair, may stop the run
            schema: Registry schema records are validated against
            on_difference: Called with every differing pair before the gate
            by_row: Pair individual rows instead of patient slices

        Returns:
            ComparisonReport of the pairs compared until the end or an abort
        """
        report = ComparisonReport()
        pairs = (self.row_pairs if by_row else self.pairs)(old_stream, new_stream, schema)
        prompting = gate is not None

        try:
            for result in pairs:
                report.pairs_compared += 1
                if result.identical:
                    continue

                report.pairs_differing += 1
                report.total_differences += result.difference_count
                report.leaf_differences += result.leaf_count
                logger.debug("Pair %d has %d differences", result.position, result.difference_count)

                if on_difference:
                    on_difference(result)

                if prompting:
                    response = gate(result)
                    if response == GateResponse.ABORT:
                        logger.info("Comparison aborted after pair %d", result.position)
                        report.aborted = True
                        break
                    if response == GateResponse.PROCEED_ALL:
                        prompting = False
        finally:
            pairs.close()

        return report


def compare(
    old_stream: BinaryIO,
    new_stream: BinaryIO,
    config: Optional[CompareConfig] = None,
    schema: Optional[RegistrySchema] = None
) -> ComparisonReport:
    """
    Convenience function to compare two exports without prompting.

    Returns:
        ComparisonReport of the whole run
    """
    engine = MigrationDiffEngine(config)
    return engine.run(old_stream, new_stream, schema=schema)
