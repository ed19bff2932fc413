"""Location resolution for SERP providers.

Maps a free-text location ("USA", "London", "Dubai") onto the two
identifiers the providers understand: a numeric location code for the
incremental-depth API and a ``geo_location`` string for the bulk-page API.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_LOCATION_NAME = "United States"
DEFAULT_LOCATION_CODE = 2840

# Checked in order with substring matching, so longer names come first.
LOCATION_CODES: list[tuple[str, int]] = [
    ("united arab emirates", 2784),
    ("united kingdom", 2826),
    ("united states", 2840),
    ("netherlands", 2528),
    ("australia", 2036),
    ("singapore", 2702),
    ("germany", 2276),
    ("canada", 2124),
    ("france", 2250),
    ("spain", 2724),
    ("italy", 2380),
    ("india", 2356),
    ("japan", 2392),
    ("china", 2156),
    ("dubai", 2784),
    ("usa", 2840),
    ("uae", 2784),
    ("uk", 2826),
    ("us", 2840),
]

GEO_LOCATIONS: dict[str, str] = {
    "united states": "United States",
    "usa": "United States",
    "us": "United States",
    "new york": "New York,New York,United States",
    "los angeles": "Los Angeles,California,United States",
    "chicago": "Chicago,Illinois,United States",
    "canada": "Canada",
    "united kingdom": "United Kingdom",
    "uk": "United Kingdom",
    "london": "London,England,United Kingdom",
    "australia": "Australia",
    "sydney": "Sydney,New South Wales,Australia",
}


@dataclass(frozen=True)
class Location:
    """A resolved search location."""

    name: str
    code: int
    geo_location: str


def location_code(location: Optional[str]) -> int:
    """Return the numeric location code, defaulting to the United States."""
    if not location:
        return DEFAULT_LOCATION_CODE
    normalized = location.lower().strip()
    tokens = set(normalized.replace(",", " ").split())
    for key, code in LOCATION_CODES:
        # Two-letter keys only match whole words ("us" must not hit "russia").
        if len(key) <= 3:
            if key in tokens:
                return code
        elif key in normalized:
            return code
    return DEFAULT_LOCATION_CODE


def geo_location(location: Optional[str]) -> str:
    if not location:
        return DEFAULT_LOCATION_NAME
    return GEO_LOCATIONS.get(location.lower().strip(), location.strip())


def resolve_location(location: Optional[str]) -> Location:
    """Resolve free text into a :class:`Location`.

    Examples:
        >>> resolve_location(None).code
        2840
        >>> resolve_location("London").geo_location
        'London,England,United Kingdom'
    """
    name = (location or "").strip() or DEFAULT_LOCATION_NAME
    return Location(
        name=name,
        code=location_code(location),
        geo_location=geo_location(location),
    )
