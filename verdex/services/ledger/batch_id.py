# verdex/services/ledger/batch_id.py

import re
from datetime import date, datetime
from typing import Union

from verdex.errors import InvalidInput

CROP_ABBREVIATIONS = {
    "Soybean": "SB",
    "Mungbean": "MB",
    "Peanut": "PN",
}

_WHITESPACE = re.compile(r"\s+")


def crop_abbreviation(crop: str) -> str:
    return CROP_ABBREVIATIONS.get(crop) or crop[:2].upper()


def format_variety_id(variety: str) -> str:
    return _WHITESPACE.sub("_", variety).upper()


def coerce_date(value: Union[date, datetime, str]) -> date:
    """Accepts date/datetime objects or ISO ``YYYY-MM-DD`` strings."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise InvalidInput(f"Invalid harvest date: {value!r}", {"dateHarvested": "invalid date"})


def derive_batch_id(harvest_date: Union[date, datetime, str], crop: str, variety: str) -> str:
    """
    Human-readable batch key: ``{YYYY}-{MM}-{cropAbbrev}-{VARIETY}``.

        >>> derive_batch_id(date(2023, 9, 20), "Soybean", "Tiwala 6")
        '2023-09-SB-TIWALA_6'
    """
    d = coerce_date(harvest_date)
    if not crop:
        raise InvalidInput("Crop is required to derive a batch ID", {"crop": "required"})
    if not variety:
        raise InvalidInput("Variety is required to derive a batch ID", {"variety": "required"})
    return f"{d.year:04d}-{d.month:02d}-{crop_abbreviation(crop)}-{format_variety_id(variety)}"
