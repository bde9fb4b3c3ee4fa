"""Geometry filter parameters for layer queries."""

from __future__ import annotations

from typing import Dict

from .. import query as params
from . import BoundingBox


ENVELOPE = "esriGeometryEnvelope"
INTERSECTS = "esriSpatialRelIntersects"


def intersects(bbox: BoundingBox) -> Dict[str, str]:
    """Envelope filter whose ``inSR`` always comes from the box itself."""

    if bbox.crs is None:
        raise ValueError("Geometry filters require a coordinate reference system")
    return {
        params.GEOMETRY: bbox.to_envelope(),
        params.GEOMETRY_TYPE: ENVELOPE,
        params.SPATIAL_REL: INTERSECTS,
        params.IN_SR: str(bbox.crs),
    }
