"""
Schema Verification

Post-condition checks that the objects migration units introduce are (or,
after a rollback, are no longer) observable on the target.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from ..discovery.metadata import MigrationUnit
from ..error_handling import VerificationWarning
from ..sql import SchemaObject
from .target import TargetDatabase

logger = logging.getLogger(__name__)


class _SchemaSnapshot:
    """Lower-cased object names per schema, reflected once per check."""

    def __init__(self, engine):
        # Fresh inspector: cached reflection would miss objects created this run
        self.inspector = inspect(engine)
        self.schemas: dict[Optional[str], dict[str, set[str]]] = {}

    def contains(self, obj: SchemaObject) -> bool:
        if obj.schema not in self.schemas:
            try:
                self.schemas[obj.schema] = self._reflect(obj.schema)
            except SQLAlchemyError as e:
                # Unknown schema: nothing in it can exist
                logger.debug(f"Could not inspect schema '{obj.schema}': {e}")
                self.schemas[obj.schema] = {}
        return obj.name.lower() in self.schemas[obj.schema].get(obj.kind, set())

    def _reflect(self, schema: Optional[str]) -> dict[str, set[str]]:
        tables = self.inspector.get_table_names(schema=schema)
        indexes = set()
        for table in tables:
            for index in self.inspector.get_indexes(table, schema=schema):
                if index.get("name"):
                    indexes.add(index["name"].lower())
        return {
            "table": {name.lower() for name in tables},
            "view": {name.lower() for name in self.inspector.get_view_names(schema=schema)},
            "index": indexes,
        }


class SchemaVerifier:
    """Checks tables, views and indexes through the SQLAlchemy inspector."""

    def __init__(self, target: TargetDatabase):
        self.target = target

    def verify_present(self, units: Iterable[MigrationUnit]) -> list[VerificationWarning]:
        """One warning per expected object that cannot be observed."""
        snapshot = _SchemaSnapshot(self.target.engine)
        warnings = [
            VerificationWarning(
                f"Expected {obj} from {unit.unit_id} is not present",
                unit_id=unit.unit_id,
                object_name=str(obj),
            )
            for unit in units
            for obj in unit.expected_objects
            if not snapshot.contains(obj)
        ]
        self._log(warnings)
        return warnings

    def verify_absent(self, units: Iterable[MigrationUnit]) -> list[VerificationWarning]:
        """One warning per object of a rolled-back unit that still exists."""
        snapshot = _SchemaSnapshot(self.target.engine)
        warnings = [
            VerificationWarning(
                f"{obj} from rolled-back {unit.unit_id} is still present",
                unit_id=unit.unit_id,
                object_name=str(obj),
            )
            for unit in units
            for obj in unit.expected_objects
            if snapshot.contains(obj)
        ]
        self._log(warnings)
        return warnings

    @staticmethod
    def _log(warnings: list[VerificationWarning]) -> None:
        for warning in warnings:
            logger.warning(warning.message)
