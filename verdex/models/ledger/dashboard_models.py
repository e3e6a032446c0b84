# verdex/models/ledger/dashboard_models.py

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional


@dataclass
class CropTotal:
    crop: str
    total: float = 0.0


@dataclass
class MonthlyBucket:
    month: str
    year: int
    total: float = 0.0


@dataclass
class DashboardStats:
    total_seeds: float = 0.0
    recent_harvest: Optional[Dict[str, Any]] = None
    most_abundant_crop: str = "N/A"
    crop_quantities: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrendSeries:
    months: int = 6
    buckets: List[MonthlyBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"months": self.months, "buckets": [asdict(b) for b in self.buckets]}
