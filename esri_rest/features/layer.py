"""FeatureLayer implementation for querying REST Feature/Map Service layers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import geopandas as gpd

from ..client import EsriRestError, RestClient
from .. import query as params
from ..query import DEFAULT_MAX_RECORD_COUNT, Query


LOGGER = logging.getLogger(__name__)

DEFAULT_OUT_SR = 4326


class TransferLimitExceeded(EsriRestError):
    """Raised when a service truncated a result at its maximum page size."""

    def __init__(self, feature_set: "FeatureSet") -> None:
        super().__init__(
            f"Service truncated the result at {len(feature_set)} features "
            "(exceededTransferLimit); narrow the query or partition its geometry",
            url=feature_set.query.to_url() if feature_set.query else None,
        )
        self.feature_set = feature_set


def _payload_crs(payload: Dict[str, Any], default: Optional[int]) -> Optional[str]:
    crs = payload.get("crs")
    if isinstance(crs, dict):
        name = (crs.get("properties") or {}).get("name")
        if name:
            # urn:ogc:def:crs:EPSG::4326 and EPSG:4326 both resolve
            code = str(name).rsplit(":", 1)[-1]
            if code.isdigit():
                return f"EPSG:{code}"
            return str(name)
    if default is None:
        return None
    return f"EPSG:{default}"


@dataclass
class FeatureSet:
    """A parsed GeoJSON query response."""

    _payload: Dict[str, Any]
    query: Optional[Query] = None
    default_crs: Optional[int] = DEFAULT_OUT_SR

    @property
    def features(self) -> List[Dict[str, Any]]:
        return list(self._payload.get("features") or [])

    @property
    def exceeded_transfer_limit(self) -> bool:
        if self._payload.get("exceededTransferLimit"):
            return True
        properties = self._payload.get("properties") or {}
        return bool(isinstance(properties, dict) and properties.get("exceededTransferLimit"))

    def __len__(self) -> int:
        return len(self._payload.get("features") or [])

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._payload)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        crs = _payload_crs(self._payload, self.default_crs)
        features = self.features
        if not features:
            return gpd.GeoDataFrame(geometry=gpd.GeoSeries([], crs=crs), crs=crs)
        return gpd.GeoDataFrame.from_features(features, crs=crs)


class FeatureLayer:
    """A single layer of a Feature/Map Service, e.g. ``.../MapServer/0``."""

    def __init__(self, url: str, *, client: Optional[RestClient] = None) -> None:
        self.url = url.rstrip("/")
        if self.url.endswith("/query"):
            self.url = self.url[: -len("/query")]
        self._client = client or RestClient()
        self._properties: Optional[Dict[str, Any]] = None

    @property
    def properties(self) -> Dict[str, Any]:
        if self._properties is None:
            self._properties = self._client.describe(self.url)
        return self._properties

    @property
    def name(self) -> str:
        return self.properties.get("name") or self.url

    @property
    def max_record_count(self) -> int:
        return self.properties.get("maxRecordCount") or DEFAULT_MAX_RECORD_COUNT

    def build_query(
        self,
        *,
        where: str = "1=1",
        out_fields: str = "*",
        geometry_filter: Optional[Dict[str, Any]] = None,
        return_geometry: bool = True,
        out_sr: Optional[int] = DEFAULT_OUT_SR,
        result_offset: Optional[int] = None,
        result_record_count: Optional[int] = None,
        order_by_fields: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> Query:
        query = Query(f"{self.url}/query")
        query.update(
            {
                params.WHERE: where,
                params.OUT_FIELDS: out_fields,
                params.RETURN_GEOMETRY: bool(return_geometry),
                params.OUT_SR: out_sr,
                params.RESULT_OFFSET: result_offset,
                params.RESULT_RECORD_COUNT: result_record_count,
                params.ORDER_BY_FIELDS: order_by_fields,
                params.FORMAT: "geojson",
            }
        )
        query.update(geometry_filter)
        query.update(extra_params)
        return query

    def query_url(self, **kwargs: Any) -> str:
        return self.build_query(**kwargs).to_url()

    def execute(self, query: Query, *, allow_truncated: bool = False) -> FeatureSet:
        payload = self._client.get(query.endpoint, query.params)
        if not isinstance(payload, dict):
            raise EsriRestError("Query response is not a JSON object", url=query.to_url())
        out_sr = query.params.get(params.OUT_SR)
        feature_set = FeatureSet(payload, query=query, default_crs=int(out_sr) if out_sr else DEFAULT_OUT_SR)
        LOGGER.debug("Query returned %d features from %s", len(feature_set), self.url)
        if feature_set.exceeded_transfer_limit:
            if not allow_truncated:
                raise TransferLimitExceeded(feature_set)
            LOGGER.warning(
                "Result from %s was truncated at %d features (exceededTransferLimit)",
                self.url,
                len(feature_set),
            )
        return feature_set

    def query(self, *, allow_truncated: bool = False, **kwargs: Any) -> FeatureSet:
        """Run a query; see :meth:`build_query` for the accepted parameters."""

        return self.execute(self.build_query(**kwargs), allow_truncated=allow_truncated)


@dataclass
class LayerInfo:
    id: int
    name: str
    geometry_type: Optional[str] = None


class MapService:
    """A Feature/Map Service root such as ``.../EDW_InvasiveSpecies_01/MapServer``."""

    def __init__(self, url: str, *, client: Optional[RestClient] = None) -> None:
        self.url = url.rstrip("/")
        self._client = client or RestClient()
        self._properties: Optional[Dict[str, Any]] = None

    @property
    def properties(self) -> Dict[str, Any]:
        if self._properties is None:
            self._properties = self._client.describe(self.url)
        return self._properties

    @property
    def layers(self) -> List[LayerInfo]:
        return [
            LayerInfo(
                id=int(layer["id"]),
                name=layer.get("name", ""),
                geometry_type=layer.get("geometryType"),
            )
            for layer in self.properties.get("layers", [])
        ]

    def layer(self, key: Union[int, str]) -> FeatureLayer:
        for info in self.layers:
            if info.id == key or (isinstance(key, str) and info.name.lower() == key.lower()):
                return FeatureLayer(f"{self.url}/{info.id}", client=self._client)
        raise EsriRestError(f"Service does not expose a layer '{key}'", url=self.url)
