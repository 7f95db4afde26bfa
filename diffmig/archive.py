"""Locating the clinical data export inside registry archives."""

from __future__ import annotations

import logging
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from .exceptions import ArchiveLayoutError

logger = logging.getLogger(__name__)

# <export root>/registry_data/clinical_data/rdrf_clinicaldata.json
CLINICAL_DATA_PARTS = ("registry_data", "clinical_data", "rdrf_clinicaldata.json")


def find_clinical_data(archive: zipfile.ZipFile) -> str:
    """Return the name of the clinical data file within an archive."""
    for name in archive.namelist():
        parts = name.split("/")
        if len(parts) == len(CLINICAL_DATA_PARTS) + 1 and tuple(parts[1:]) == CLINICAL_DATA_PARTS:
            return name

    raise ArchiveLayoutError(
        f"{CLINICAL_DATA_PARTS[-1]} file not found in zip", archive.filename
    )


@contextmanager
def open_export(path: Union[str, Path]) -> Iterator[tuple[Optional[str], BinaryIO]]:
    """
    Open an export for reading.

    Zip archives are searched for their clinical data file, any other file
    is read as the export itself.

    Yields:
        Tuple of (name within the archive or None, binary stream)
    """
    export_path = Path(path)
    if not export_path.exists():
        raise FileNotFoundError(f"Export not found: {export_path}")

    if zipfile.is_zipfile(export_path):
        with zipfile.ZipFile(export_path) as archive:
            inner_path = find_clinical_data(archive)
            logger.debug("Reading %s from %s", inner_path, export_path)
            with archive.open(inner_path) as stream:
                yield inner_path, stream
    else:
        with open(export_path, "rb") as stream:
            yield None, stream
