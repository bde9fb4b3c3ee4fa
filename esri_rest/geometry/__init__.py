"""Bounding box helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import geopandas as gpd
from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry


DEFAULT_TOLERANCE = 1e-9


def crs_to_epsg(crs: Any) -> Optional[int]:
    """Return the EPSG code of a pyproj CRS (or CRS-like value), if it has one."""

    if crs is None:
        return None
    if isinstance(crs, int):
        return crs
    to_epsg = getattr(crs, "to_epsg", None)
    if to_epsg is not None:
        return to_epsg()
    text = str(crs).strip().upper()
    if text.startswith("EPSG:"):
        return int(text.split(":", 1)[1])
    if text.isdigit():
        return int(text)
    return None


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned extent in the coordinate system identified by ``crs``."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    crs: int

    def __post_init__(self) -> None:
        values = (self.xmin, self.ymin, self.xmax, self.ymax)
        if not all(math.isfinite(value) for value in values):
            raise ValueError(f"Bounding box has non-finite coordinates: {values}")
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(f"Bounding box minimum exceeds maximum: {values}")

    @classmethod
    def from_geometry(cls, geometry: BaseGeometry, crs: Any) -> "BoundingBox":
        if geometry is None or geometry.is_empty:
            raise ValueError("Cannot derive a bounding box from an empty geometry")
        epsg = crs_to_epsg(crs)
        if epsg is None:
            raise ValueError("A bounding box needs an EPSG coordinate reference system")
        xmin, ymin, xmax, ymax = geometry.bounds
        return cls(float(xmin), float(ymin), float(xmax), float(ymax), epsg)

    @classmethod
    def from_features(cls, frame: gpd.GeoDataFrame) -> "BoundingBox":
        """Minimum enclosing extent of every geometry in ``frame``, in its native CRS."""

        geometries = frame.geometry[~(frame.geometry.is_empty | frame.geometry.isna())]
        if geometries.empty:
            raise ValueError("Cannot derive a bounding box from an empty feature collection")
        epsg = crs_to_epsg(frame.crs)
        if epsg is None:
            raise ValueError("Feature collection has no EPSG coordinate reference system")
        xmin, ymin, xmax, ymax = geometries.total_bounds
        return cls(float(xmin), float(ymin), float(xmax), float(ymax), epsg)

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    def as_tuple(self) -> tuple:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def to_polygon(self) -> Polygon:
        return box(self.xmin, self.ymin, self.xmax, self.ymax)

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame({"name": ["bbox"]}, geometry=[self.to_polygon()], crs=f"EPSG:{self.crs}")

    def to_envelope(self) -> str:
        """The ``xmin,ymin,xmax,ymax`` form accepted by the ``geometry`` parameter."""

        return ",".join(repr(float(value)) for value in self.as_tuple())

    def to_esri_json(self) -> Dict[str, Any]:
        return {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
            "spatialReference": {"wkid": self.crs},
        }

    def contains_point(self, x: float, y: float) -> bool:
        return self.xmin <= x <= self.xmax and self.ymin <= y <= self.ymax

    def almost_equals(self, other: "BoundingBox", tolerance: float = DEFAULT_TOLERANCE) -> bool:
        if self.crs != other.crs:
            return False
        return all(
            math.isclose(mine, theirs, rel_tol=tolerance, abs_tol=tolerance)
            for mine, theirs in zip(self.as_tuple(), other.as_tuple())
        )

    def split(self, nx: int = 2, ny: int = 2) -> List["BoundingBox"]:
        """Partition into ``nx`` x ``ny`` tiles that share edges but not area."""

        if nx < 1 or ny < 1:
            raise ValueError("Tile counts must be positive")
        xs = [self.xmin + self.width * i / nx for i in range(nx)] + [self.xmax]
        ys = [self.ymin + self.height * j / ny for j in range(ny)] + [self.ymax]
        return [
            BoundingBox(xs[i], ys[j], xs[i + 1], ys[j + 1], self.crs)
            for j in range(ny)
            for i in range(nx)
        ]


__all__ = ["BoundingBox", "crs_to_epsg"]
