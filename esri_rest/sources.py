"""Known Forest Service layers and how to override them."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from .query import equals_clause, like_clause


LOGGER = logging.getLogger(__name__)

EDW_ROOT = "https://apps.fs.usda.gov/arcx/rest/services/EDW"

FOREST_BOUNDARIES = "forest_boundaries"
INVASIVE_SPECIES = "invasive_species"

FOREST_NAME_FIELD = "FORESTNAME"


@dataclass
class ServiceSource:
    """A layer endpoint plus the defaults used when querying it."""

    name: str
    layer_url: str
    where: str = "1=1"
    out_fields: Sequence[str] = field(default_factory=lambda: ["*"])
    id_field: str = "OBJECTID"
    label_field: Optional[str] = None
    description: str = ""

    @property
    def out_fields_param(self) -> str:
        return ",".join(self.out_fields) if self.out_fields else "*"


def forest_where(forest_name: str, *, like: bool = False) -> str:
    """``FORESTNAME = '...'`` or, with ``like``, ``FORESTNAME LIKE '%...%'``."""

    if like:
        return like_clause(FOREST_NAME_FIELD, forest_name)
    return equals_clause(FOREST_NAME_FIELD, forest_name)


def _load_source_overrides() -> Dict[str, ServiceSource]:
    overrides_path = os.getenv("ESRI_REST_SOURCES")
    if not overrides_path:
        return {}
    try:
        with open(overrides_path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except OSError as exc:
        LOGGER.warning("Unable to read service source overrides: %s", exc)
        return {}
    except json.JSONDecodeError as exc:
        LOGGER.warning("Invalid JSON in service source overrides: %s", exc)
        return {}

    if isinstance(payload, dict):
        payload = [dict(entry, key=key) for key, entry in payload.items()]

    overrides: Dict[str, ServiceSource] = {}
    for entry in payload:
        try:
            source = ServiceSource(
                name=entry["name"],
                layer_url=entry["layer_url"],
                where=entry.get("where", "1=1"),
                out_fields=entry.get("out_fields", ["*"]),
                id_field=entry.get("id_field", "OBJECTID"),
                label_field=entry.get("label_field"),
                description=entry.get("description", ""),
            )
        except KeyError as exc:
            LOGGER.warning("Skipping service source override missing key %s", exc)
            continue
        overrides[entry.get("key") or source.name.lower()] = source
    return overrides


def default_sources() -> Dict[str, ServiceSource]:
    return {
        FOREST_BOUNDARIES: ServiceSource(
            name="Administrative Forest Boundaries",
            layer_url=os.getenv(
                "FOREST_BOUNDARIES_URL",
                f"{EDW_ROOT}/EDW_ForestSystemBoundaries_01/MapServer/1",
            ),
            out_fields=["*"],
            label_field=FOREST_NAME_FIELD,
            description="National Forest administrative boundaries (polygons).",
        ),
        INVASIVE_SPECIES: ServiceSource(
            name="Current Invasive Plants",
            layer_url=os.getenv(
                "INVASIVE_SPECIES_URL",
                f"{EDW_ROOT}/EDW_InvasiveSpecies_01/MapServer/0",
            ),
            out_fields=["*"],
            label_field=os.getenv("INVASIVE_SPECIES_LABEL_FIELD", "NRCS_PLANT_CODE"),
            description="Invasive plant infestation sites (polygons).",
        ),
    }


def load_sources() -> Dict[str, ServiceSource]:
    sources = default_sources()
    sources.update(_load_source_overrides())
    return sources


__all__ = [
    "ServiceSource",
    "FOREST_BOUNDARIES",
    "INVASIVE_SPECIES",
    "FOREST_NAME_FIELD",
    "forest_where",
    "load_sources",
]
