"""Runs a comparison of two export files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .archive import open_export
from .engine import ConfirmationGate, MigrationDiffEngine
from .exceptions import ArchiveLayoutError
from .models import CompareConfig, ComparisonReport, PairResult
from .schema import RegistrySchema

logger = logging.getLogger(__name__)


class DiffMigRunner:
    """
    Compares two export files, plain JSON or registry zip archives.

    Usage:
        runner = DiffMigRunner("old.zip", "new.zip", schema_path="registry.yaml")
        report = runner.run()
        print(report.total_differences)
    """

    def __init__(
        self,
        old_path: str,
        new_path: str,
        schema_path: Optional[str] = None,
        config: Optional[CompareConfig] = None
    ):
        """
        Initialize the runner.

        Args:
            old_path: Export of the earlier migration
            new_path: Export of the later migration
            schema_path: Optional YAML/JSON registry schema to validate records against
            config: Optional comparison configuration
        """
        self.old_path = Path(old_path)
        self.new_path = Path(new_path)
        self.schema_path = Path(schema_path) if schema_path else None
        self.config = config or CompareConfig()
        self._schema: Optional[RegistrySchema] = None

    @property
    def schema(self) -> Optional[RegistrySchema]:
        """Load and cache the registry schema, if one was given."""
        if self._schema is None and self.schema_path is not None:
            self._schema = RegistrySchema.from_file(str(self.schema_path))
        return self._schema

    def run(
        self,
        gate: Optional[ConfirmationGate] = None,
        on_difference: Optional[Callable[[PairResult], None]] = None
    ) -> ComparisonReport:
        """
        Run the comparison.

        Args:
            gate: Confirmation gate consulted after each differing pair
            on_difference: Called with every differing pair

        Returns:
            ComparisonReport of the run
        """
        schema = self.schema
        engine = MigrationDiffEngine(self.config)

        with open_export(self.old_path) as (old_name, old_stream), \
                open_export(self.new_path) as (new_name, new_stream):
            if old_name != new_name:
                logger.error("Registry clinical data paths don't match")
                logger.debug("Old path: %s", old_name)
                logger.debug("New path: %s", new_name)
                raise ArchiveLayoutError(
                    f"Registry clinical data paths don't match: {old_name} vs {new_name}"
                )

            return engine.run(
                old_stream,
                new_stream,
                gate=gate,
                schema=schema,
                on_difference=on_difference
            )
