"""
Instrument catalog shared by request submission and completion logging.
"""

from __future__ import annotations

from typing import Dict, List, Optional

INSTRUMENT_DATA: Dict[str, List[str]] = {
    "Brass": ["Trumpet", "Trombone", "Euphonium", "French Horn"],
    "Woodwinds": ["Saxophone", "Flute", "Clarinet", "Oboe"],
    "Strings": ["Violin", "Viola", "Cello", "Bass"],
}

CATEGORIES: List[str] = list(INSTRUMENT_DATA)

BRANDS: List[str] = [
    "Yamaha",
    "Bach",
    "Conn",
    "Selmer",
    "Buffet",
    "Getzen",
    "King",
    "Bundy",
    "Armstrong",
    "Jupiter",
    "Other",
]


def category_for(instrument_type: str) -> Optional[str]:
    """Return the catalog category of an instrument type, or None if unknown."""
    for category, instruments in INSTRUMENT_DATA.items():
        if instrument_type in instruments:
            return category
    return None


__all__ = ["BRANDS", "CATEGORIES", "INSTRUMENT_DATA", "category_for"]
