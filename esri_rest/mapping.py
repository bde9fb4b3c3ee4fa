"""Render query results as overlay layers on a Leaflet map."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import folium
import geopandas as gpd


LOGGER = logging.getLogger(__name__)

WEB_CRS = "EPSG:4326"
DEFAULT_ZOOM = 8

# (folium tile name, layer control label); these providers need no API key
EXTRA_TILES: Tuple[Tuple[str, str], ...] = (("Esri WorldImagery", "Esri Satellite"),)


@dataclass
class MapLayer:
    """One overlay: a feature collection plus how to draw it."""

    name: str
    frame: gpd.GeoDataFrame
    color: str = "#2b8cbe"
    fill_opacity: float = 0.2
    tooltip_fields: Sequence[str] = field(default_factory=list)


def _tooltip(layer: MapLayer, frame: gpd.GeoDataFrame) -> Optional[folium.GeoJsonTooltip]:
    fields = [name for name in layer.tooltip_fields if name in frame.columns]
    if not fields:
        return None
    return folium.GeoJsonTooltip(fields=fields, aliases=fields, localize=True)


def _is_point_layer(frame: gpd.GeoDataFrame) -> bool:
    types = set(frame.geometry.geom_type.dropna())
    return bool(types) and types <= {"Point", "MultiPoint"}


def _add_layer(fmap: folium.Map, layer: MapLayer) -> None:
    frame = layer.frame
    if frame.crs is not None and frame.crs != WEB_CRS:
        frame = frame.to_crs(WEB_CRS)

    # Timestamps and other non-JSON columns break GeoJSON serialisation.
    columns = [name for name in frame.columns if name != frame.geometry.name]
    frame = frame.astype({name: str for name in columns if frame[name].dtype.kind in "Mm"})

    color = layer.color
    fill_opacity = layer.fill_opacity

    def style_function(feature):
        return {
            "color": color,
            "fillColor": color,
            "weight": 2,
            "fillOpacity": fill_opacity,
        }

    marker = None
    if _is_point_layer(frame):
        marker = folium.CircleMarker(radius=4, color=color, fill=True, fill_opacity=0.8)

    folium.GeoJson(
        frame,
        name=layer.name,
        style_function=style_function,
        tooltip=_tooltip(layer, frame),
        marker=marker,
    ).add_to(fmap)


def render_map(
    layers: List[MapLayer],
    *,
    zoom_start: int = DEFAULT_ZOOM,
    extra_tiles: Sequence[Tuple[str, str]] = EXTRA_TILES,
) -> folium.Map:
    """Build a map with one overlay per non-empty layer, fitted to their extent."""

    drawable = [layer for layer in layers if not layer.frame.empty]
    fmap = folium.Map(tiles="OpenStreetMap", zoom_start=zoom_start)
    for tiles, label in extra_tiles:
        folium.TileLayer(tiles, name=label).add_to(fmap)

    bounds = None
    for layer in drawable:
        LOGGER.debug("Adding map layer %s (%d features)", layer.name, len(layer.frame))
        _add_layer(fmap, layer)
        frame = layer.frame.to_crs(WEB_CRS) if layer.frame.crs is not None else layer.frame
        xmin, ymin, xmax, ymax = frame.total_bounds
        if bounds is None:
            bounds = [xmin, ymin, xmax, ymax]
        else:
            bounds = [min(bounds[0], xmin), min(bounds[1], ymin), max(bounds[2], xmax), max(bounds[3], ymax)]

    if bounds is not None:
        fmap.fit_bounds([[bounds[1], bounds[0]], [bounds[3], bounds[2]]])

    folium.LayerControl(position="topright", collapsed=False).add_to(fmap)
    return fmap


def save_map(fmap: folium.Map, path: str) -> str:
    fmap.save(path)
    LOGGER.info("Wrote map to %s", path)
    return path
