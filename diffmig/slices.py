"""Groups clinical records into per-patient slices."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from .models import ClinicalRecord, PatientSlice, format_fingerprint

logger = logging.getLogger(__name__)


class PatientSliceAssembler:
    """
    Folds contiguous runs of same-patient records into PatientSlices.

    Records are expected to come grouped by patient, not globally sorted.
    A slice ends at the first record of another patient, or at a record
    whose shape fingerprint the slice already holds. In the latter case the
    patient's records are split across several slices; the split isn't
    corrected, the next slice simply starts from that record.
    """

    def __init__(self, records: Iterable[ClinicalRecord]):
        self._records = iter(records)
        self._peeked: Optional[ClinicalRecord] = None

    def __iter__(self) -> Iterator[PatientSlice]:
        return self

    def __next__(self) -> PatientSlice:
        first = self._take()
        if first is None:
            raise StopIteration

        patient_slice = PatientSlice(patient=first.patient)
        patient_slice.add(first)

        while True:
            record = self._peek()
            if record is None:
                break
            if not patient_slice.can_add(record):
                if record.patient == patient_slice.patient:
                    logger.debug(
                        "Patient %s repeats fingerprint %s in record %s, starting a new slice",
                        record.patient, format_fingerprint(record.fingerprint), record.id
                    )
                break
            patient_slice.add(self._take())

        return patient_slice

    def close(self):
        """Stop reading, closing the record source if it can be closed."""
        self._peeked = None
        close = getattr(self._records, "close", None)
        if close is not None:
            close()

    def _peek(self) -> Optional[ClinicalRecord]:
        if self._peeked is None:
            self._peeked = next(self._records, None)
        return self._peeked

    def _take(self) -> Optional[ClinicalRecord]:
        record = self._peek()
        self._peeked = None
        return record


def assemble_slices(records: Iterable[ClinicalRecord]) -> Iterator[PatientSlice]:
    return PatientSliceAssembler(records)
