"""
Comparable Store Interface - Abstract Base for Comparable Sources

The valuation pipeline only ever reads from a store. Ingestion writes
validated records through import_comparable; the store decides ids and
versions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from avm.comp_engine.errors import ValidationError
from avm.comp_engine.models import Comparable, SearchFilters
from avm.store.schema import ImportReport, RowError


logger = logging.getLogger(__name__)


class ComparableStore(ABC):
    """
    Abstract interface for comparable storage.

    Subclasses must implement:
    - query_comparables: coarse candidate retrieval for a search envelope
    - get_comparable: latest version of one record
    - import_comparable: validate and store one raw record

    query_comparables may over-return; the candidate filter applies every
    predicate exactly.
    """

    @abstractmethod
    def query_comparables(self, filters: SearchFilters) -> list[Comparable]:
        """Return at least every comparable that can match the filters."""
        ...

    @abstractmethod
    def get_comparable(self, comp_id: str) -> Optional[Comparable]:
        """Return the latest version of a comparable, or None."""
        ...

    @abstractmethod
    def import_comparable(self, record: dict[str, Any]) -> Comparable:
        """
        Validate and store a raw record.

        Raises:
            ValidationError: if the record violates the import schema
        """
        ...

    def import_comparables(self, records: Iterable[dict[str, Any]]) -> ImportReport:
        """
        Import many records, collecting per-row rejections instead of failing.

        Args:
            records: Raw records in input order

        Returns:
            ImportReport with imported comparables and row errors
        """
        report = ImportReport()
        for row, record in enumerate(records):
            try:
                report.imported.append(self.import_comparable(record))
            except ValidationError as e:
                logger.warning("Rejected import row %d: %s", row, e)
                report.errors.append(RowError(row=row, message=str(e), field=e.field))

        logger.info(
            "Imported %d comparables, rejected %d",
            report.imported_count,
            report.rejected_count,
        )
        return report
