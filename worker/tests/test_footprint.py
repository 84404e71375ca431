import asyncio

import pytest
import requests

from projectmap.core import footprint


def square_nodes(lng, lat, half):
    return [
        {"lon": lng - half, "lat": lat - half},
        {"lon": lng + half, "lat": lat - half},
        {"lon": lng + half, "lat": lat + half},
        {"lon": lng - half, "lat": lat + half},
    ]


def resolve(fetcher, lat=39.0, lng=-105.0):
    return asyncio.run(footprint.FootprintResolver(fetcher=fetcher).resolve(lat, lng))


def test_close_ring_appends_first_vertex_once():
    assert footprint.close_ring([(0, 0), (1, 0), (1, 1)]) == [(0, 0), (1, 0), (1, 1), (0, 0)]
    assert footprint.close_ring([(0, 0), (1, 0), (1, 1), (0, 0)]) == [(0, 0), (1, 0), (1, 1), (0, 0)]


def test_polygon_area_scales_degrees_to_feet():
    ring = footprint.close_ring([(0.0, 0.0), (0.001, 0.0), (0.001, 0.001), (0.0, 0.001)])

    # 0.001 deg * 364000 ft/deg = 364 ft per side
    assert footprint.polygon_area_sqft(ring) == pytest.approx(364.0 * 364.0)


def test_polygon_area_is_orientation_independent():
    ring = footprint.close_ring([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001), (0.001, 0.0)])
    assert footprint.polygon_area_sqft(ring) == pytest.approx(364.0 * 364.0)


def test_centroid_ignores_closing_vertex():
    ring = footprint.close_ring([(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)])
    assert footprint.polygon_centroid(ring) == (1.0, 1.0)


def test_resolve_uses_first_building():
    elements = [
        {"type": "way", "id": 11, "geometry": square_nodes(-105.0, 39.0, 0.0001), "tags": {"building": "yes", "building:levels": "2"}},
        {"type": "way", "id": 12, "geometry": square_nodes(-105.1, 39.1, 0.0002), "tags": {}},
    ]

    result = resolve(lambda lat, lng: elements)

    assert result.is_approximate is False
    assert result.coordinates == (-105.0, 39.0)
    assert len(result.polygon) == 5
    assert result.polygon[0] == result.polygon[-1]
    assert result.area_estimate == pytest.approx(72.8 * 72.8, rel=1e-3)
    assert result.centroid == pytest.approx((-105.0, 39.0))
    assert result.tags["building:levels"] == "2"
    assert result.tags["id"] == 11


def test_resolve_reads_relation_outer_member():
    relation = {
        "type": "relation",
        "id": 5,
        "members": [
            {"role": "inner", "geometry": square_nodes(0.0, 0.0, 0.00001)},
            {"role": "outer", "geometry": square_nodes(0.0, 0.0, 0.0001)},
        ],
    }

    result = resolve(lambda lat, lng: [relation], lat=0.0, lng=0.0)

    assert result.is_approximate is False
    assert result.polygon[1] == (0.0001, -0.0001)


def test_zero_buildings_falls_back_to_square_lot():
    result = resolve(lambda lat, lng: [])

    assert result.is_approximate is True
    assert result.area_estimate == footprint.NOMINAL_LOT_AREA_SQFT
    expected = [
        (-105.00015, 38.99985),
        (-104.99985, 38.99985),
        (-104.99985, 39.00015),
        (-105.00015, 39.00015),
        (-105.00015, 38.99985),
    ]
    assert len(result.polygon) == len(expected)
    for vertex, want in zip(result.polygon, expected):
        assert vertex == pytest.approx(want)
    assert result.centroid is None


def test_unusable_geometry_falls_back_to_square_lot():
    result = resolve(lambda lat, lng: [{"type": "way", "id": 1, "geometry": [{"lat": 1.0, "lon": 1.0}]}])

    assert result.is_approximate is True
    assert result.polygon is not None


@pytest.mark.parametrize("error", [requests.ConnectionError("down"), ValueError("bad json")])
def test_lookup_failure_means_no_data(error):
    def fetcher(lat, lng):
        raise error

    result = resolve(fetcher)

    assert result.polygon is None
    assert result.area_estimate == 0
    assert result.is_approximate is None
    assert result.has_data is False


def test_default_fetcher_uses_settings(monkeypatch, settings):
    captured = {}

    def fake_buildings_near(lat, lng, radius_m=100, base_url=None, timeout=20):
        captured.update(lat=lat, lng=lng, radius_m=radius_m, base_url=base_url)
        return []

    monkeypatch.setattr(footprint.overpass, "buildings_near", fake_buildings_near)
    asyncio.run(footprint.FootprintResolver(settings=settings).resolve(39.0, -105.0))

    assert captured == {"lat": 39.0, "lng": -105.0, "radius_m": 100, "base_url": "http://overpass.test/api/interpreter"}


def test_layer_keeps_at_most_one_install():
    layer = footprint.FootprintLayer()
    first = resolve(lambda lat, lng: [])
    second = resolve(lambda lat, lng: [{"type": "way", "id": 2, "geometry": square_nodes(-105.0, 39.0, 0.0001)}])

    layer.install(first)
    assert layer.style == footprint.APPROXIMATE_LOT_STYLE
    layer.install(second)

    assert layer.result is second
    assert (layer.installs, layer.removals) == (2, 1)
    assert layer.style == footprint.FOOTPRINT_STYLE
    assert layer.to_geojson()["geometry"]["type"] == "Polygon"


def test_layer_skips_results_without_polygon():
    layer = footprint.FootprintLayer()
    layer.install(resolve(lambda lat, lng: []))
    layer.install(footprint.FootprintResult(coordinates=(0.0, 0.0)))

    assert layer.is_installed is False
    assert layer.to_geojson() is None
