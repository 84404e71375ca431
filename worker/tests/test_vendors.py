import pytest

from projectmap.vendors import overpass, photon


class DummyResponse:
    def __init__(self, status_code=200, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self._invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError("http error")

    def json(self):
        if self._invalid_json:
            raise ValueError("not json")
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []
        self.response = DummyResponse()

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, params, timeout))
        return self.response

    def post(self, url, data=None, timeout=None):
        self.calls.append(("POST", url, data, timeout))
        return self.response


@pytest.fixture
def photon_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(photon, "_SESSION", session)
    return session


@pytest.fixture
def overpass_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(overpass, "_SESSION", session)
    return session


def test_photon_search_sends_limit_one(photon_session):
    photon_session.response = DummyResponse(payload={"features": []})

    payload = photon.search("100 Main St", base_url="http://photon.test/api/", timeout=3)

    assert payload == {"features": []}
    method, url, params, timeout = photon_session.calls[0]
    assert (method, url, timeout) == ("GET", "http://photon.test/api/", 3)
    assert params == {"q": "100 Main St", "limit": 1}


def test_photon_search_http_error(photon_session):
    photon_session.response = DummyResponse(status_code=503)
    with pytest.raises(RuntimeError):
        photon.search("100 Main St")


def test_photon_search_invalid_json(photon_session):
    photon_session.response = DummyResponse(invalid_json=True)
    with pytest.raises(photon.PhotonError):
        photon.search("100 Main St")


def test_photon_first_coordinates_takes_first_feature():
    payload = {
        "features": [
            {"geometry": {"type": "Point", "coordinates": [-105.0, 39.0]}},
            {"geometry": {"type": "Point", "coordinates": [-80.0, 25.0]}},
        ]
    }
    assert photon.first_coordinates(payload) == (-105.0, 39.0)


def test_photon_first_coordinates_empty_and_malformed():
    assert photon.first_coordinates({"features": []}) is None
    assert photon.first_coordinates({}) is None
    with pytest.raises(photon.PhotonError):
        photon.first_coordinates({"features": [{"geometry": {"coordinates": [1]}}]})


def test_overpass_query_mentions_ways_and_relations():
    query = overpass.build_building_query(39.5, -105.25, radius_m=100)

    assert query.startswith("[out:json][timeout:15];")
    assert 'way["building"](around:100,39.5,-105.25);' in query
    assert 'relation["building"](around:100,39.5,-105.25);' in query
    assert query.endswith("out geom;")


def test_overpass_buildings_near_posts_query(overpass_session):
    elements = [{"type": "way", "id": 1, "geometry": []}]
    overpass_session.response = DummyResponse(payload={"elements": elements})

    result = overpass.buildings_near(39.5, -105.25, base_url="http://overpass.test/api/interpreter")

    assert result == elements
    method, url, data, _ = overpass_session.calls[0]
    assert method == "POST"
    assert url == "http://overpass.test/api/interpreter"
    assert "around:100,39.5,-105.25" in data["data"]


def test_overpass_buildings_near_missing_elements(overpass_session):
    overpass_session.response = DummyResponse(payload={"version": 0.6})
    assert overpass.buildings_near(1.0, 2.0) == []


def test_overpass_invalid_json(overpass_session):
    overpass_session.response = DummyResponse(invalid_json=True)
    with pytest.raises(overpass.OverpassError):
        overpass.buildings_near(1.0, 2.0)
