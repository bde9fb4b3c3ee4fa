"""CLI walking through a two-stage Forest Service query.

1. Fetch a National Forest boundary from the Administrative Forest Boundaries
   layer by name.
2. Use the forest's bounding box to query a second layer (invasive plant sites
   by default).
3. Drop the sites that fall inside the box but outside the forest itself.
4. Write both collections as GeoJSON and draw them on an interactive map.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import geopandas as gpd

from esri_rest.client import DEFAULT_TIMEOUT, RestClient
from esri_rest.features import FeatureLayer, MapService
from esri_rest.mapping import MapLayer, render_map, save_map
from esri_rest.query import combine_where
from esri_rest.sources import FOREST_BOUNDARIES, INVASIVE_SPECIES, forest_where, load_sources
from esri_rest.spatial import DEFAULT_MAX_DEPTH, RefinedResult, query_within


DEFAULT_OUTPUT_DIR = "output"
DEFAULT_MAP_NAME = "forest_map.html"


def parse_args(argv: List[str]) -> argparse.Namespace:
    sources = load_sources()
    boundaries = sources[FOREST_BOUNDARIES]
    species = sources[INVASIVE_SPECIES]

    parser = argparse.ArgumentParser(
        description=(
            "Query a National Forest boundary from the Forest Service EDW, use its "
            "bounding box to query a second layer, keep only the features inside the "
            "forest and render both on a map."
        )
    )
    parser.add_argument("forest", nargs="?", help="Forest name, e.g. 'Angeles National Forest'")
    parser.add_argument(
        "--like",
        action="store_true",
        help="Match forest names containing the given text instead of the exact name",
    )
    parser.add_argument(
        "--boundary-url",
        default=boundaries.layer_url,
        help="Forest boundary layer URL (default: %(default)s)",
    )
    parser.add_argument(
        "--species-url",
        default=species.layer_url,
        help="Layer queried with the forest's bounding box (default: %(default)s)",
    )
    parser.add_argument(
        "--species-where",
        default=species.where,
        help="Optional WHERE clause applied to the secondary layer",
    )
    parser.add_argument(
        "--out-fields",
        default=species.out_fields_param,
        help="Comma-separated fields to return from the secondary layer (default: all fields)",
    )
    parser.add_argument(
        "--id-field",
        default=species.id_field,
        help="Stable identifier used to deduplicate partitioned results (default: %(default)s)",
    )
    parser.add_argument(
        "--partition",
        action="store_true",
        help="Split the bounding box into tiles whenever the service truncates a result",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help="Maximum number of times a tile may be split (default: %(default)s)",
    )
    parser.add_argument(
        "--allow-truncated",
        action="store_true",
        help="Accept a truncated secondary result instead of failing",
    )
    parser.add_argument(
        "--output-dir",
        default=DEFAULT_OUTPUT_DIR,
        help="Directory for GeoJSON, summary and map output (default: %(default)s)",
    )
    parser.add_argument(
        "--no-map",
        dest="render_map",
        action="store_false",
        help="Skip writing the HTML map",
    )
    parser.set_defaults(render_map=True)
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="HTTP timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--referer",
        default=os.getenv("ESRI_REST_REFERER"),
        help="Referer header to send (defaults to the ESRI_REST_REFERER environment variable)",
    )
    parser.add_argument(
        "--list-layers",
        metavar="SERVICE_URL",
        help="Print the layers of a MapServer/FeatureServer service and exit",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    if not args.forest and not args.list_layers:
        parser.error("a forest name is required unless --list-layers is given")
    return args


def configure_logging(verbose: bool) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def fetch_forests(
    layer: FeatureLayer,
    forest: str,
    *,
    like: bool = False,
    base_where: str = "1=1",
) -> gpd.GeoDataFrame:
    where = combine_where(base_where, forest_where(forest, like=like))
    logging.debug("TRACE: fetch_forests(where=\"%s\")", where)
    forests = layer.query(where=where, out_fields="*").to_geodataframe()
    if forests.empty:
        raise RuntimeError(f"No forest boundary matched {where}")
    return forests


def list_layers(service_url: str, client: RestClient) -> List[Dict[str, Any]]:
    service = MapService(service_url, client=client)
    return [
        {"id": info.id, "name": info.name, "geometryType": info.geometry_type}
        for info in service.layers
    ]


def _write_geojson(frame: gpd.GeoDataFrame, path: str) -> str:
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(frame.to_json())
    return path


def write_outputs(
    output_dir: str,
    forests: gpd.GeoDataFrame,
    result: RefinedResult,
    *,
    render: bool = True,
    label_fields: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    os.makedirs(output_dir, exist_ok=True)
    label_fields = label_fields or {}

    files = {
        "forests": _write_geojson(forests, os.path.join(output_dir, "forests.geojson")),
        "candidates": _write_geojson(result.candidates, os.path.join(output_dir, "bbox_candidates.geojson")),
        "features": _write_geojson(result.features, os.path.join(output_dir, "features.geojson")),
    }

    if render:
        layers = [
            MapLayer(
                "Forest boundary",
                forests,
                color="#238b45",
                fill_opacity=0.15,
                tooltip_fields=[label_fields.get("forests", "FORESTNAME")],
            ),
            MapLayer(
                "Features inside forest",
                result.features,
                color="#d7301f",
                fill_opacity=0.6,
                tooltip_fields=[label_fields.get("features", "")],
            ),
        ]
        files["map"] = save_map(render_map(layers), os.path.join(output_dir, DEFAULT_MAP_NAME))

    summary = {
        "bbox": {
            "xmin": result.bbox.xmin,
            "ymin": result.bbox.ymin,
            "xmax": result.bbox.xmax,
            "ymax": result.bbox.ymax,
            "wkid": result.bbox.crs,
        },
        "forest_count": len(forests),
        "candidate_count": len(result.candidates),
        "feature_count": len(result.features),
        "false_positive_count": result.false_positives,
        "truncated": result.exceeded_transfer_limit,
        "files": files,
    }
    with open(os.path.join(output_dir, "summary.json"), "w", encoding="utf-8") as fh:
        json.dump(summary, fh, indent=2)
    return summary


def run(args: argparse.Namespace, client: RestClient) -> Dict[str, Any]:
    """Execute the boundary query, bbox query, refinement and output steps."""

    sources = load_sources()
    boundary_layer = FeatureLayer(args.boundary_url, client=client)
    species_layer = FeatureLayer(args.species_url, client=client)

    forests = fetch_forests(
        boundary_layer,
        args.forest,
        like=args.like,
        base_where=sources[FOREST_BOUNDARIES].where,
    )
    logging.info("Matched %d forest boundaries", len(forests))

    result = query_within(
        species_layer,
        forests,
        where=args.species_where,
        out_fields=args.out_fields,
        partition=args.partition,
        allow_truncated=args.allow_truncated,
        id_field=args.id_field,
        max_depth=args.max_depth,
    )

    return write_outputs(
        args.output_dir,
        forests,
        result,
        render=args.render_map,
        label_fields={
            "forests": sources[FOREST_BOUNDARIES].label_field or "",
            "features": sources[INVASIVE_SPECIES].label_field or "",
        },
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Run the walkthrough and print its summary as JSON."""

    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose)
    logging.debug("TRACE: main(forest='%s', like=%s)", args.forest, args.like)

    try:
        client = RestClient(timeout=args.timeout, referer=args.referer)
        if args.list_layers:
            payload: Any = list_layers(args.list_layers, client)
        else:
            payload = run(args, client)
        print(json.dumps(payload, indent=2))
    except Exception as exc:
        logging.debug("TRACE: main(exception: %s)", exc)
        print(f"Error querying Esri REST service: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
