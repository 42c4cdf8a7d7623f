import json

import pytest

from ar_cities.catalog import CatalogError, load_cities
from ar_cities.config import DEFAULT_CITIES_PATH


def test_bundled_catalog_loads():
    cities = load_cities(DEFAULT_CITIES_PATH)
    assert len(cities) >= 10
    nyc = next(c for c in cities if c.name == "New York")
    assert nyc.key == "New York|US"
    assert nyc.population > 8_000_000
    assert len({c.key for c in cities}) == len(cities)


def write(tmp_path, data):
    path = tmp_path / "cities.json"
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    return path


def test_loads_in_file_order(tmp_path):
    path = write(tmp_path, [
        {"name": "B", "country": "X", "lat": 1, "lon": 2, "population": 5},
        {"name": "A", "country": "X", "lat": "3.5", "lon": 4, "population": 10},
    ])
    cities = load_cities(path)
    assert [c.name for c in cities] == ["B", "A"]
    assert cities[1].lat == 3.5


@pytest.mark.parametrize("data, message", [
    ("{not json", "Cannot read"),
    ({"name": "A"}, "expected a JSON array"),
    ([{"name": "A", "country": "X", "lat": 1, "lon": 2}], "missing population"),
    ([{"name": "A", "country": "X", "lat": "north", "lon": 2, "population": 1}], "invalid"),
])
def test_malformed_catalogs(tmp_path, data, message):
    with pytest.raises(CatalogError, match=message):
        load_cities(write(tmp_path, data))


def test_missing_file(tmp_path):
    with pytest.raises(CatalogError):
        load_cities(tmp_path / "nope.json")
