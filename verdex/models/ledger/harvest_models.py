# verdex/models/ledger/harvest_models.py
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


STATUS_ACTIVE = "Active"
STATUS_DEPLETED = "Depleted"
STATUS_ARCHIVED = "Archived"

# statuses the distribution-driven recompute leaves alone
ARCHIVAL_STATUSES = frozenset({STATUS_ARCHIVED})

CropName = Literal["Soybean", "Mungbean", "Peanut"]
Classification = Literal["Nucleus", "Breeder", "Foundation", "Registered", "Certified"]
BatchStatus = Literal["Active", "Depleted", "Archived"]


def _status_alias(v):
    # the harvest form labels the archival option "Storage"
    if isinstance(v, str) and v.strip().lower() == "storage":
        return STATUS_ARCHIVED
    return v


class HarvestBatchCreateModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, allow_inf_nan=False)

    seedBatchId: Optional[str] = None
    crop: CropName
    variety: str = Field(..., min_length=1)
    classification: Classification
    datePlanted: date
    dateHarvested: date
    area: str = Field(..., min_length=1)
    totalLotArea: float = Field(..., ge=0)
    germination: float = Field(..., ge=0, le=100)
    inQuantity: float = Field(..., gt=0)
    remarks: str = ""

    @field_validator("seedBatchId")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("area", mode="before")
    @classmethod
    def _area_as_text(cls, v):
        # spreadsheets hand numeric plot codes over as numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class HarvestBatchPatchModel(BaseModel):
    """
    Partial update of a batch. ``logs`` and ``id`` are deliberately absent:
    they are owned by the distribution operations.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, allow_inf_nan=False)

    seedBatchId: Optional[str] = Field(None, min_length=1)
    crop: Optional[CropName] = None
    variety: Optional[str] = Field(None, min_length=1)
    classification: Optional[Classification] = None
    datePlanted: Optional[date] = None
    dateHarvested: Optional[date] = None
    area: Optional[str] = Field(None, min_length=1)
    totalLotArea: Optional[float] = Field(None, ge=0)
    germination: Optional[float] = Field(None, ge=0, le=100)
    inQuantity: Optional[float] = Field(None, gt=0)
    outQuantity: Optional[float] = Field(None, ge=0)
    balance: Optional[float] = None
    status: Optional[BatchStatus] = None
    remarks: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _storage_alias(cls, v):
        return _status_alias(v)
