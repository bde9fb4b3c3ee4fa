"""Query URL construction for Esri REST Feature/Map Service layers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote


WHERE = "where"
GEOMETRY = "geometry"
GEOMETRY_TYPE = "geometryType"
IN_SR = "inSR"
OUT_SR = "outSR"
SPATIAL_REL = "spatialRel"
OUT_FIELDS = "outFields"
RESULT_RECORD_COUNT = "resultRecordCount"
RESULT_OFFSET = "resultOffset"
RETURN_GEOMETRY = "returnGeometry"
ORDER_BY_FIELDS = "orderByFields"
FORMAT = "f"

# Services used here cap a page at 1000 records when resultRecordCount is unset.
DEFAULT_MAX_RECORD_COUNT = 1000


def encode_value(value: Any) -> str:
    """Coerce a parameter value to the string the REST API expects."""

    if isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        return json.dumps(dict(value), separators=(",", ":"))
    if isinstance(value, (list, tuple)):
        return ",".join(encode_value(item) for item in value)
    return str(value)


def encode_params(params: Mapping[str, Any]) -> str:
    """Percent-encode ``params`` into a query string.

    ``None`` values are dropped so the server default applies; an empty string
    is kept and emitted as ``key=``. Keys are emitted in sorted order.
    """

    pairs = []
    for key in sorted(params):
        value = params[key]
        if value is None:
            continue
        pairs.append(f"{quote(str(key), safe='')}={quote(encode_value(value), safe='')}")
    return "&".join(pairs)


def build_query_url(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    base = endpoint.rstrip("/")
    query = encode_params(params or {})
    return f"{base}?{query}" if query else base


@dataclass
class Query:
    """A layer query endpoint plus its parameter mapping."""

    endpoint: str
    params: Dict[str, Any] = field(default_factory=dict)

    def set(self, key: str, value: Any) -> "Query":
        self.params[key] = value
        return self

    def update(self, values: Optional[Mapping[str, Any]]) -> "Query":
        if values:
            self.params.update(values)
        return self

    def emitted(self) -> Dict[str, str]:
        return {
            key: encode_value(value)
            for key, value in sorted(self.params.items())
            if value is not None
        }

    def to_url(self) -> str:
        return build_query_url(self.endpoint, self.params)

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.to_url()


# ----------------------------------------------------------------------
# WHERE clause helpers
def escape_sql_literal(value: str) -> str:
    return value.replace("'", "''")


def equals_clause(field_name: str, value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{field_name} = {value}"
    return f"{field_name} = '{escape_sql_literal(str(value))}'"


LIKE_ESCAPE = "\\"


def like_clause(field_name: str, substring: str) -> str:
    """Match ``substring`` anywhere in ``field_name``.

    ``%`` and ``_`` in the substring match literally; an ``ESCAPE`` clause is
    only added when the substring contains one of them.
    """

    literal = escape_sql_literal(substring)
    if not any(char in substring for char in ("%", "_", LIKE_ESCAPE)):
        return f"{field_name} LIKE '%{literal}%'"
    for char in (LIKE_ESCAPE, "%", "_"):
        literal = literal.replace(char, LIKE_ESCAPE + char)
    return f"{field_name} LIKE '%{literal}%' ESCAPE '{LIKE_ESCAPE}'"


def combine_where(base_where: Optional[str], clause: Optional[str]) -> str:
    base = (base_where or "").strip()
    clause = (clause or "").strip()
    if not clause or clause == "1=1":
        return base or "1=1"
    if not base or base == "1=1":
        return clause
    return f"({base}) AND ({clause})"
