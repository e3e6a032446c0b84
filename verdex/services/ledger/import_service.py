# verdex/services/ledger/import_service.py
"""
Row-by-row import of harvest batches and distributions.

Rows come in already decoded (list of cell values per row, header first).
Each row is one ledger call; a row the ledger rejects is logged and reported,
and the import moves on to the next row.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from verdex.errors import VerdexError
from verdex.services.ledger.ledger_service import LedgerService

logger = logging.getLogger(__name__)

HARVEST_COLUMNS = (
    "crop",
    "variety",
    "classification",
    "area",
    "totalLotArea",
    "germination",
    "datePlanted",
    "dateHarvested",
    "inQuantity",
    "remarks",
)

DISTRIBUTION_COLUMNS = (
    "date",
    "seedBatchId",
    "quantity",
    "mode",
    "purpose",
    "recipientName",
    "affiliation",
    "contactNumber",
    "requestedBy",
    "area",
    "remarks",
)

# spreadsheet day 0
SERIAL_EPOCH = date(1899, 12, 30)


@dataclass
class RowFailure:
    row: int
    code: str
    error: str


@dataclass
class ImportReport:
    created: List[str] = field(default_factory=list)
    failed: List[RowFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": list(self.created),
            "failed": [asdict(f) for f in self.failed],
            "createdCount": len(self.created),
            "failedCount": len(self.failed),
        }


def capitalize_words(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return " ".join(w[:1].upper() + w[1:] for w in value.strip().lower().split(" "))


def parse_cell_date(value: Any) -> Optional[date]:
    """Serial day numbers, date objects, ``MM/DD/YYYY`` or ``YYYY-MM-DD``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return SERIAL_EPOCH + timedelta(days=int(value))
        except (OverflowError, ValueError):
            # nan, inf, or a serial past year 9999
            return None
    if isinstance(value, str):
        s = value.strip()
        try:
            if "/" in s:
                return datetime.strptime(s, "%m/%d/%Y").date()
            if "-" in s:
                return date.fromisoformat(s[:10])
        except ValueError:
            return None
    return None


def _blank(row: Sequence[Any]) -> bool:
    return not row or all(c is None or (isinstance(c, str) and not c.strip()) for c in row)


def _row_to_dict(row: Sequence[Any], columns: Sequence[str]) -> Dict[str, Any]:
    cells = list(row) + [None] * (len(columns) - len(row))
    return {k: v for k, v in zip(columns, cells) if v is not None and v != ""}


class ImportService:

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def _run(self, rows: Sequence[Sequence[Any]], kind: str, build, create, created_by: str) -> ImportReport:
        report = ImportReport()
        # row 1 is the header
        for number, row in enumerate(rows[1:], start=2):
            if _blank(row):
                continue
            try:
                new_id = create(build(row), created_by=created_by)
            except VerdexError as exc:
                logger.warning("Skipping %s row %d: %s", kind, number, exc)
                report.failed.append(RowFailure(row=number, code=exc.code, error=str(exc)))
                continue
            report.created.append(new_id)

        logger.info(
            "%s import finished: %d created, %d skipped",
            kind.capitalize(), len(report.created), len(report.failed),
        )
        return report

    @staticmethod
    def harvest_payload(row: Sequence[Any]) -> Dict[str, Any]:
        data = _row_to_dict(row, HARVEST_COLUMNS)
        for k in ("crop", "variety", "classification", "area", "remarks"):
            if k in data:
                data[k] = capitalize_words(data[k])
        for k in ("datePlanted", "dateHarvested"):
            if k in data:
                data[k] = parse_cell_date(data[k])
        return data

    @staticmethod
    def distribution_payload(row: Sequence[Any]) -> Dict[str, Any]:
        data = _row_to_dict(row, DISTRIBUTION_COLUMNS)
        if "date" in data:
            data["date"] = parse_cell_date(data["date"])
        if isinstance(data.get("mode"), str):
            data["mode"] = data["mode"].strip().lower()
        if "seedBatchId" in data:
            data["seedBatchId"] = str(data["seedBatchId"]).strip()
        return data

    def import_harvests(self, rows: Sequence[Sequence[Any]], created_by: str = "") -> ImportReport:
        return self._run(rows, "harvest", self.harvest_payload, self.ledger.create_harvest_batch, created_by)

    def import_distributions(self, rows: Sequence[Sequence[Any]], created_by: str = "") -> ImportReport:
        return self._run(
            rows, "distribution", self.distribution_payload, self.ledger.create_distribution, created_by
        )
