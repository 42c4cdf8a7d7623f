"""
City catalog loading.
"""

import json
import logging
from pathlib import Path
from typing import List

from .models import City

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "country", "lat", "lon", "population")


class CatalogError(ValueError):
    """Raised for unreadable or malformed city files."""


def load_cities(path: Path) -> List[City]:
    """
    Load cities from a JSON array.

    Args:
        path: File holding ``[{"name", "country", "lat", "lon", "population"}, ...]``

    Returns:
        Cities in file order
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Cannot read city catalog {path}: {e}") from e

    if not isinstance(data, list):
        raise CatalogError(f"{path}: expected a JSON array of cities")

    cities = []
    for i, entry in enumerate(data):
        missing = [k for k in REQUIRED_FIELDS if k not in entry]
        if missing:
            raise CatalogError(f"{path}: entry {i} is missing {', '.join(missing)}")
        try:
            cities.append(City(
                name=str(entry["name"]),
                country=str(entry["country"]),
                lat=float(entry["lat"]),
                lon=float(entry["lon"]),
                population=int(entry["population"]),
            ))
        except (TypeError, ValueError) as e:
            raise CatalogError(f"{path}: entry {i} is invalid: {e}") from e

    logger.info(f"Loaded {len(cities)} cities from {path}")
    return cities
