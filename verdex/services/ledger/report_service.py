# verdex/services/ledger/report_service.py

import calendar
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from verdex.models.ledger.dashboard_models import (
    CropTotal,
    DashboardStats,
    MonthlyBucket,
    TrendSeries,
)
from verdex.services.ledger.dates import to_utc, utcnow
from verdex.services.ledger.store import Doc, LedgerStore

# widest trend window a request may ask for
MAX_TREND_MONTHS = 60


# -----------------------------
# Small helpers for mixed schemas
# -----------------------------
def _num(x) -> float:
    try:
        n = float(x)
    except (TypeError, ValueError):
        return 0.0
    return n if n == n else 0.0


def _harvest_summary(doc: Doc) -> Dict[str, Any]:
    return {
        "id": doc.get("id"),
        "seedBatchId": doc.get("seedBatchId") or doc.get("id"),
        "crop": doc.get("crop") or "",
        "variety": doc.get("variety") or "",
        "classification": doc.get("classification") or "",
        "dateHarvested": to_utc(doc.get("dateHarvested")),
        "inQuantity": _num(doc.get("inQuantity")),
        "balance": _num(doc.get("balance")),
    }


def _month_window(now: datetime, months: int) -> List[Tuple[int, int]]:
    """(year, month) pairs, oldest first, ending with the month of ``now``."""
    out = []
    for back in range(max(months, 1) - 1, -1, -1):
        idx = now.year * 12 + (now.month - 1) - back
        out.append((idx // 12, idx % 12 + 1))
    return out


class ReportService:
    """
    Read-only rollups over whatever the store has committed. Records with
    missing or malformed fields are left out of the totals, never an error.
    """

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow, trend_months: int = 6):
        self.store = store
        self._now = clock
        self.trend_months = trend_months

    # -----------------------------
    # Balances
    # -----------------------------
    @staticmethod
    def _crop_totals(harvests: Iterable[Doc]) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for h in harvests:
            crop = h.get("crop")
            if not crop:
                continue
            totals[crop] = totals.get(crop, 0.0) + _num(h.get("balance"))
        return totals

    def dashboard_stats(self) -> DashboardStats:
        harvests = self.store.list_batches()

        stats = DashboardStats()
        stats.total_seeds = sum(_num(h.get("balance")) for h in harvests)

        dated = [h for h in harvests if to_utc(h.get("dateHarvested"))]
        if dated:
            latest = max(dated, key=lambda h: to_utc(h.get("dateHarvested")))
            stats.recent_harvest = _harvest_summary(latest)

        stats.crop_quantities = self._crop_totals(harvests)
        best = 0.0
        for crop, qty in stats.crop_quantities.items():
            if qty > best:
                stats.most_abundant_crop, best = crop, qty

        return stats

    def crop_stats(self) -> List[CropTotal]:
        return [CropTotal(crop=c, total=t) for c, t in self._crop_totals(self.store.list_batches()).items()]

    # -----------------------------
    # Monthly trends
    # -----------------------------
    def _bucketize(self, docs: Iterable[Doc], date_key: str, qty_key: str, months: Optional[int]) -> TrendSeries:
        months = min(max(months or self.trend_months, 1), MAX_TREND_MONTHS)
        window = _month_window(self._now(), months)
        totals = {ym: 0.0 for ym in window}

        for d in docs:
            dt = to_utc(d.get(date_key))
            if dt is None:
                continue
            ym = (dt.year, dt.month)
            if ym in totals:
                totals[ym] += _num(d.get(qty_key))

        return TrendSeries(
            months=months,
            buckets=[
                MonthlyBucket(month=calendar.month_abbr[m], year=y, total=totals[(y, m)])
                for y, m in window
            ],
        )

    def harvest_trends(self, months: Optional[int] = None) -> TrendSeries:
        """Harvested quantity (``inQuantity``) per month of ``dateHarvested``."""
        return self._bucketize(self.store.list_batches(), "dateHarvested", "inQuantity", months)

    def distribution_trends(self, months: Optional[int] = None) -> TrendSeries:
        """Distributed quantity per month of the distribution ``date``."""
        return self._bucketize(self.store.list_distributions(), "date", "quantity", months)
