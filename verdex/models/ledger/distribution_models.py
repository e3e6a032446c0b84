# verdex/models/ledger/distribution_models.py
import datetime as dt
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MODE_EXPORTATION = "exportation"
MODE_BREEDING = "breeding"

# fields persisted on the distribution and its log entry, per mode
MODE_FIELDS = {
    MODE_EXPORTATION: ("recipientName", "affiliation", "contactNumber"),
    MODE_BREEDING: ("requestedBy", "area"),
}

REQUIRED_MODE_FIELDS = {
    MODE_EXPORTATION: ("recipientName", "affiliation", "purpose"),
    MODE_BREEDING: ("requestedBy", "area"),
}

DistributionMode = Literal["exportation", "breeding"]


class DistributionCreateModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, allow_inf_nan=False)

    date: dt.date
    seedBatchId: str = Field(..., min_length=1)
    quantity: float
    purpose: str = ""
    mode: DistributionMode = MODE_EXPORTATION

    # exportation
    recipientName: Optional[str] = None
    affiliation: Optional[str] = None
    contactNumber: Optional[str] = None

    # breeding
    requestedBy: Optional[str] = None
    area: Optional[str] = None

    remarks: str = ""

    @model_validator(mode="after")
    def _mode_fields_present(self):
        missing = [k for k in REQUIRED_MODE_FIELDS[self.mode] if not getattr(self, k)]
        if missing:
            raise ValueError(f"{self.mode} distributions require: {', '.join(missing)}")
        return self

    def mode_fields(self) -> Dict[str, Any]:
        return {k: getattr(self, k) or "" for k in MODE_FIELDS[self.mode]}


class DistributionPatchModel(BaseModel):
    """
    Partial update of a distribution. ``seedBatchId`` is not patchable: moving
    seed between batches is a delete followed by a create.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, allow_inf_nan=False)

    date: Optional[dt.date] = None
    quantity: Optional[float] = None
    purpose: Optional[str] = None
    mode: Optional[DistributionMode] = None
    recipientName: Optional[str] = None
    affiliation: Optional[str] = None
    contactNumber: Optional[str] = None
    requestedBy: Optional[str] = None
    area: Optional[str] = None
    remarks: Optional[str] = None
