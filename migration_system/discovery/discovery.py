"""
Migration Discovery

Main orchestrator for enumerating migration units across sources.
"""

import logging
from typing import Iterable, Iterator, Optional, Sequence, Union

from ..error_handling import DiscoveryError, ErrorCodes, ErrorContext
from .metadata import MigrationUnit
from .sources import DirectorySource, MigrationSource
from .unit_scanner import UnitScanner

logger = logging.getLogger(__name__)


class UnitCatalog:
    """
    Lazy, restartable view over the discovered units.

    Every iteration re-reads the sources; nothing is retained between calls.
    """

    def __init__(self, discovery: "MigrationDiscovery"):
        self._discovery = discovery

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self._discovery.discover())

    def __len__(self) -> int:
        return len(self._discovery.discover())

    def get(self, unit_id: str) -> Optional[MigrationUnit]:
        for unit in self:
            if unit.unit_id == unit_id:
                return unit
        return None


class MigrationDiscovery:
    """Main migration discovery orchestrator."""

    def __init__(
        self,
        sources: Union[MigrationSource, Sequence[MigrationSource]],
        scanner: Optional[UnitScanner] = None,
    ):
        if isinstance(sources, MigrationSource):
            sources = [sources]
        self.sources = list(sources)
        self.scanner = scanner or UnitScanner()

    @classmethod
    def from_directories(cls, directories: Iterable[str], convention: str = "auto"):
        return cls([DirectorySource(path, convention) for path in directories])

    def discover(self) -> list[MigrationUnit]:
        """
        Enumerate every unit, ordered by (version, sequence).

        Raises:
            DiscoveryError: If a source is missing or two units share a key
            MalformedUnitError: If a file does not encode its identity
        """
        entries = []
        for source in self.sources:
            entries.extend(source.entries())

        units = sorted(self.scanner.scan(entries), key=lambda unit: unit.key)

        for previous, current in zip(units, units[1:]):
            if previous.key == current.key:
                raise DiscoveryError(
                    f"Duplicate migration unit {current.unit_id}: "
                    f"{previous.source_path or previous.source_name} and "
                    f"{current.source_path or current.source_name}",
                    error_code=ErrorCodes.DUPLICATE_UNIT,
                    context=ErrorContext(
                        unit_id=current.unit_id,
                        file_path=current.source_path or current.source_name,
                    ),
                )

        logger.info(
            f"Discovered {len(units)} migration units from "
            f"{', '.join(source.describe() for source in self.sources)}"
        )
        return units

    def catalog(self) -> UnitCatalog:
        return UnitCatalog(self)
