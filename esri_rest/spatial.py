"""Bounding-box pre-filtered queries refined by an exact spatial join."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import geopandas as gpd

from .features import FeatureLayer, FeatureSet, TransferLimitExceeded
from .geometry import BoundingBox
from .geometry.filters import intersects


LOGGER = logging.getLogger(__name__)

DEFAULT_ID_FIELD = "OBJECTID"
DEFAULT_MAX_DEPTH = 4


@dataclass
class RefinedResult:
    """Output of a bbox query followed by the exact post-filter."""

    bbox: BoundingBox
    candidates: gpd.GeoDataFrame
    features: gpd.GeoDataFrame
    exceeded_transfer_limit: bool = False

    @property
    def false_positives(self) -> int:
        return len(self.candidates) - len(self.features)


def refine(candidates: gpd.GeoDataFrame, reference: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Keep the candidate rows that intersect at least one reference geometry.

    Candidates are compared in the reference CRS but returned unchanged, with
    their original index and columns.
    """

    if candidates.empty:
        return candidates.copy()
    if reference.crs is None or candidates.crs is None:
        raise ValueError("Both feature collections need a coordinate reference system")
    probe = candidates
    if candidates.crs != reference.crs:
        probe = candidates.to_crs(reference.crs)
    # join on row positions so duplicated index labels still map back one-to-one
    probe = probe[[probe.geometry.name]].reset_index(drop=True)
    reference_shapes = reference[[reference.geometry.name]]

    joined = gpd.sjoin(probe, reference_shapes, how="inner", predicate="intersects")
    positions = sorted(set(joined.index))
    return candidates.iloc[positions].copy()


def _feature_key(feature: Dict[str, Any], id_field: str) -> Any:
    properties = feature.get("properties") or {}
    if properties.get(id_field) is not None:
        return (id_field, properties[id_field])
    if feature.get("id") is not None:
        return ("id", feature["id"])
    return json.dumps(feature, sort_keys=True, default=str)


def _append_unique_features(
    accumulator: List[Dict[str, Any]],
    seen: Set[Any],
    features: List[Dict[str, Any]],
    id_field: str,
) -> None:
    for feature in features:
        key = _feature_key(feature, id_field)
        if key in seen:
            continue
        seen.add(key)
        accumulator.append(feature)


def query_partitioned(
    layer: FeatureLayer,
    bbox: BoundingBox,
    *,
    where: str = "1=1",
    out_fields: str = "*",
    id_field: str = DEFAULT_ID_FIELD,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> FeatureSet:
    """Query ``bbox``, splitting it into 2x2 tiles whenever a page is truncated.

    Features touching a shared tile edge come back from both tiles; they are
    kept once, keyed by ``id_field``.
    """

    collected: List[Dict[str, Any]] = []
    seen: Set[Any] = set()
    template: Optional[Dict[str, Any]] = None
    last_query = None

    pending = [(bbox, 0)]
    while pending:
        tile, depth = pending.pop(0)
        logging.debug("TRACE: query_partitioned(tile=%s, depth=%d)", tile.as_tuple(), depth)
        try:
            feature_set = layer.query(where=where, out_fields=out_fields, geometry_filter=intersects(tile))
        except TransferLimitExceeded:
            if depth >= max_depth:
                raise
            LOGGER.info("Tile %s was truncated; splitting into quadrants", tile.as_tuple())
            pending.extend((sub_tile, depth + 1) for sub_tile in tile.split(2, 2))
            continue

        payload = feature_set.to_dict()
        if template is None:
            template = {key: value for key, value in payload.items() if key != "features"}
        last_query = feature_set.query
        _append_unique_features(collected, seen, feature_set.features, id_field)

    if template is None:  # pragma: no cover - the first tile always sets it
        template = {"type": "FeatureCollection"}
    template["features"] = collected
    template["exceededTransferLimit"] = False
    return FeatureSet(template, query=last_query)


def query_within(
    layer: FeatureLayer,
    reference: gpd.GeoDataFrame,
    *,
    where: str = "1=1",
    out_fields: str = "*",
    partition: bool = False,
    allow_truncated: bool = False,
    id_field: str = DEFAULT_ID_FIELD,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> RefinedResult:
    """Query ``layer`` with the bounding box of ``reference`` and drop false positives."""

    bbox = BoundingBox.from_features(reference)
    logging.debug("TRACE: query_within(bbox=%s, crs=%s)", bbox.as_tuple(), bbox.crs)

    if partition:
        feature_set = query_partitioned(
            layer,
            bbox,
            where=where,
            out_fields=out_fields,
            id_field=id_field,
            max_depth=max_depth,
        )
    else:
        feature_set = layer.query(
            where=where,
            out_fields=out_fields,
            geometry_filter=intersects(bbox),
            allow_truncated=allow_truncated,
        )

    candidates = feature_set.to_geodataframe()
    features = refine(candidates, reference)
    LOGGER.info(
        "Bounding box returned %d features; %d intersect the reference geometry",
        len(candidates),
        len(features),
    )
    return RefinedResult(
        bbox=bbox,
        candidates=candidates,
        features=features,
        exceeded_transfer_limit=feature_set.exceeded_transfer_limit,
    )
