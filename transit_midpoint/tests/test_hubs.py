import json

from transit_midpoint.hubs import NYC_HUBS, HubRegistry, TransitHub, filter_relevant_hubs
from transit_midpoint.models import Coordinate, ImportanceTier

from .conftest import TIMES_SQUARE, UNION_SQUARE

WEST = Coordinate(40.0, -74.02)
EAST = Coordinate(40.0, -73.98)


def _hub(name, lng, importance=ImportanceTier.LOCAL, lat=40.0):
    return TransitHub(name, Coordinate(lat, lng), (), importance)


def test_midtown_to_union_square_hubs():
    candidates = HubRegistry().filter_relevant(TIMES_SQUARE, UNION_SQUARE)
    labels = [c.label for c in candidates]
    assert "34th St-Herald Sq" in labels
    assert "34th St-Penn Station" in labels
    # endpoints are not "between" the two points
    assert "Times Square" not in labels
    assert "Union Square" not in labels
    assert all(c.importance == ImportanceTier.MAJOR for c in candidates)


def test_filter_drops_hubs_outside_the_relevance_radius():
    hubs = [_hub("middle", -74.0), _hub("far", -73.5)]
    assert [h.name for h in filter_relevant_hubs(hubs, WEST, EAST)] == ["middle"]


def test_sort_by_importance_then_distance_then_name():
    hubs = [
        _hub("b-local", -74.0),
        _hub("major-off-center", -74.01, ImportanceTier.MAJOR, lat=40.002),
        _hub("a-local", -74.0),
        _hub("major-center", -74.0, ImportanceTier.MAJOR),
        _hub("secondary", -74.0, ImportanceTier.SECONDARY),
    ]
    names = [h.name for h in filter_relevant_hubs(hubs, WEST, EAST, limit=10)]
    assert names == ["major-center", "major-off-center", "secondary", "a-local", "b-local"]


def test_limit_truncates():
    hubs = [_hub(f"hub-{i}", -74.0 + i * 0.001) for i in range(8)]
    assert len(filter_relevant_hubs(hubs, WEST, EAST, limit=3)) == 3
    assert filter_relevant_hubs(hubs, WEST, EAST, limit=0) == []
    assert len(HubRegistry(hubs, max_candidates=5).filter_relevant(WEST, EAST)) == 5


def test_same_point_has_no_relevant_hubs():
    assert HubRegistry().filter_relevant(TIMES_SQUARE, TIMES_SQUARE) == []


def test_default_catalog():
    assert len(NYC_HUBS) == len({h.name for h in NYC_HUBS})
    assert HubRegistry().hubs == NYC_HUBS


def test_load_catalog_from_json(tmp_path):
    path = tmp_path / "hubs.json"
    path.write_text(json.dumps([
        {"name": "Middle", "lat": 40.0, "lng": -74.0, "lines": ["A"], "importance": "major"},
        {"name": "Elsewhere", "lat": 41.0, "lng": -74.0},
    ]))
    registry = HubRegistry.from_json_file(str(path), max_candidates=2)
    assert registry.max_candidates == 2
    assert registry.hubs[0].importance == ImportanceTier.MAJOR
    assert registry.hubs[1].importance == ImportanceTier.LOCAL
    assert [c.label for c in registry.filter_relevant(WEST, EAST)] == ["Middle"]
