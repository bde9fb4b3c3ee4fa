"""Tests for query URL construction."""

from urllib.parse import unquote

import pytest

from esri_rest.query import (
    Query,
    build_query_url,
    combine_where,
    encode_params,
    encode_value,
    equals_clause,
    like_clause,
)


ENDPOINT = "https://example.test/arcx/rest/services/EDW/EDW_ForestSystemBoundaries_01/MapServer/1/query"

PARAMETER_MAPPINGS = [
    {"where": "FORESTNAME = 'Angeles National Forest'", "outFields": "*", "f": "geojson"},
    {"where": "FORESTNAME LIKE '%Tahoe National%'", "returnGeometry": "false"},
    {"geometry": "-118.0,34.0,-117.0,35.0", "geometryType": "esriGeometryEnvelope", "inSR": "4326"},
    {"where": "a=1&b=2", "outFields": "FORESTNAME,REGION", "orderByFields": "FORESTNAME DESC"},
    {"where": "", "resultRecordCount": "10"},
    {"where": "100% \"quoted\" + plus #hash ?q /slash"},
]


def _split(url: str) -> dict:
    _, _, query = url.partition("?")
    pairs = [pair.split("=", 1) for pair in query.split("&") if pair]
    return {unquote(key): unquote(value) for key, value in pairs}


@pytest.mark.parametrize("params", PARAMETER_MAPPINGS)
def test_emitted_values_decode_to_originals(params):
    decoded = _split(build_query_url(ENDPOINT, params))
    assert decoded == params


@pytest.mark.parametrize("params", PARAMETER_MAPPINGS)
def test_never_emits_keys_absent_from_mapping(params):
    decoded = _split(build_query_url(ENDPOINT, params))
    assert set(decoded) <= set(params)


def test_reserved_characters_are_percent_encoded():
    url = build_query_url(ENDPOINT, {"where": "FORESTNAME = 'Angeles National Forest'"})
    assert url == ENDPOINT + "?where=FORESTNAME%20%3D%20%27Angeles%20National%20Forest%27"
    assert " " not in url
    assert "'" not in url


def test_commas_in_envelope_are_encoded():
    query = encode_params({"geometry": "-118.0,34.0,-117.0,35.0"})
    assert query == "geometry=-118.0%2C34.0%2C-117.0%2C35.0"


def test_none_is_omitted_but_empty_string_is_emitted():
    url = build_query_url(ENDPOINT, {"where": "1=1", "outSR": None, "outFields": ""})
    assert "outSR" not in url
    assert url.endswith("?outFields=&where=1%3D1")


def test_parameter_order_is_stable():
    first = build_query_url(ENDPOINT, {"where": "1=1", "f": "geojson", "outFields": "*"})
    second = build_query_url(ENDPOINT, {"outFields": "*", "where": "1=1", "f": "geojson"})
    assert first == second
    assert first.split("?", 1)[1].startswith("f=geojson&outFields=")


def test_no_params_returns_bare_endpoint():
    assert build_query_url(ENDPOINT + "/") == ENDPOINT


def test_encode_value_coercions():
    assert encode_value(True) == "true"
    assert encode_value(False) == "false"
    assert encode_value(4326) == "4326"
    assert encode_value(["FORESTNAME", "REGION"]) == "FORESTNAME,REGION"
    assert encode_value({"wkid": 4326}) == '{"wkid":4326}'


def test_query_object_builds_url_and_emitted_mapping():
    query = Query(ENDPOINT).set("where", "1=1").update({"returnGeometry": False, "outSR": None})
    assert query.emitted() == {"returnGeometry": "false", "where": "1=1"}
    assert query.to_url() == ENDPOINT + "?returnGeometry=false&where=1%3D1"


def test_where_clause_helpers():
    assert equals_clause("FORESTNAME", "Angeles National Forest") == "FORESTNAME = 'Angeles National Forest'"
    assert equals_clause("REGION", 5) == "REGION = 5"
    assert equals_clause("FORESTNAME", "O'Neil") == "FORESTNAME = 'O''Neil'"
    assert like_clause("FORESTNAME", "Tahoe National") == "FORESTNAME LIKE '%Tahoe National%'"


def test_like_clause_matches_wildcards_literally():
    assert like_clause("FORESTNAME", "100%") == "FORESTNAME LIKE '%100\\%%' ESCAPE '\\'"
    assert like_clause("UNIT_ID", "R5_") == "UNIT_ID LIKE '%R5\\_%' ESCAPE '\\'"
    assert like_clause("PATH", "a\\b") == "PATH LIKE '%a\\\\b%' ESCAPE '\\'"
    assert like_clause("FORESTNAME", "O'Neil_") == "FORESTNAME LIKE '%O''Neil\\_%' ESCAPE '\\'"


def test_combine_where():
    assert combine_where("1=1", "REGION = '05'") == "REGION = '05'"
    assert combine_where("A = 1", "1=1") == "A = 1"
    assert combine_where("", None) == "1=1"
    assert combine_where("A = 1", "B = 2") == "(A = 1) AND (B = 2)"
