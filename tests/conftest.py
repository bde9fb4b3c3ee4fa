"""
Shared fixtures for the esri_rest test suite.

HTTP traffic never leaves the process: ``fake_opener`` replaces the
``RestClient`` opener and answers each request from registered routes.
"""

import json
from typing import Any, Callable, List, Tuple, Union
from urllib.parse import parse_qs, urlparse

import geopandas as gpd
import pytest
from shapely.geometry import Polygon

from esri_rest.client import RestClient


BOUNDARY_URL = "https://example.test/arcx/rest/services/EDW/EDW_ForestSystemBoundaries_01/MapServer/1"
SPECIES_URL = "https://example.test/arcx/rest/services/EDW/EDW_InvasiveSpecies_01/MapServer/0"

# Right triangle: its bounding box is (-118, 34, -117, 35) but the upper-right
# half of that box lies outside the forest.
FOREST_TRIANGLE = [[-118.0, 34.0], [-117.0, 34.0], [-118.0, 35.0], [-118.0, 34.0]]


def feature(geometry: dict, properties: dict, feature_id: Any = None) -> dict:
    payload = {"type": "Feature", "geometry": geometry, "properties": properties}
    if feature_id is not None:
        payload["id"] = feature_id
    return payload


def point(x: float, y: float) -> dict:
    return {"type": "Point", "coordinates": [x, y]}


def collection(features: List[dict], **extra: Any) -> dict:
    payload = {"type": "FeatureCollection", "features": features}
    payload.update(extra)
    return payload


FOREST_COLLECTION = collection(
    [
        feature(
            {"type": "Polygon", "coordinates": [FOREST_TRIANGLE]},
            {"OBJECTID": 7, "FORESTNAME": "Angeles National Forest", "REGION": "05"},
            7,
        )
    ]
)

TAHOE_COLLECTION = collection(
    [
        feature(
            {"type": "Polygon", "coordinates": [[[-121.0, 39.0], [-120.0, 39.0], [-120.0, 40.0], [-121.0, 39.0]]]},
            {"OBJECTID": 11, "FORESTNAME": "Tahoe National Forest"},
            11,
        ),
        feature(
            {"type": "Polygon", "coordinates": [[[-120.5, 38.5], [-119.5, 38.5], [-119.5, 39.5], [-120.5, 38.5]]]},
            {"OBJECTID": 12, "FORESTNAME": "Lake Tahoe Basin Management Unit - Tahoe National"},
            12,
        ),
    ]
)

SPECIES_COLLECTION = collection(
    [
        feature(point(-117.8, 34.2), {"OBJECTID": 1, "NRCS_PLANT_CODE": "CYSC4"}, 1),
        feature(point(-117.5, 34.4), {"OBJECTID": 2, "NRCS_PLANT_CODE": "ARDO4"}, 2),
        feature(point(-117.2, 34.9), {"OBJECTID": 3, "NRCS_PLANT_CODE": "TARA"}, 3),
        feature(point(-117.05, 34.95), {"OBJECTID": 4, "NRCS_PLANT_CODE": "BRTE"}, 4),
    ]
)

Responder = Union[bytes, dict, list, Exception, Callable[[str], Any]]


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        return False


class FakeOpener:
    """Stands in for ``urllib.request.OpenerDirector``."""

    def __init__(self) -> None:
        self.routes: List[Tuple[Callable[[str], bool], Responder]] = []
        self.requests: List[Any] = []

    def add(self, match: Union[str, Callable[[str], bool]], responder: Responder) -> None:
        predicate = match if callable(match) else (lambda url, text=match: text in url)
        self.routes.append((predicate, responder))

    @property
    def urls(self) -> List[str]:
        return [request.full_url for request in self.requests]

    def params(self, index: int = -1) -> dict:
        query = urlparse(self.urls[index]).query
        return {key: values[0] for key, values in parse_qs(query, keep_blank_values=True).items()}

    def open(self, request: Any, timeout: float = None) -> FakeResponse:
        self.requests.append(request)
        url = request.full_url
        for predicate, responder in self.routes:
            if not predicate(url):
                continue
            if callable(responder):
                responder = responder(url)
            if isinstance(responder, Exception):
                raise responder
            if isinstance(responder, bytes):
                return FakeResponse(responder)
            return FakeResponse(json.dumps(responder).encode("utf-8"))
        raise AssertionError(f"Unexpected request: {url}")


@pytest.fixture
def fake_opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def client(fake_opener: FakeOpener) -> RestClient:
    rest_client = RestClient(timeout=5)
    rest_client._opener = fake_opener
    return rest_client


@pytest.fixture
def forest_frame() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"FORESTNAME": ["Angeles National Forest"]},
        geometry=[Polygon(FOREST_TRIANGLE)],
        crs="EPSG:4326",
    )


@pytest.fixture
def species_frame() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame.from_features(SPECIES_COLLECTION["features"], crs="EPSG:4326")
