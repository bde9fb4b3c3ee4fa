"""Client for querying Esri REST Feature/Map Services."""

from .client import EsriRestError, RestClient
from .features import FeatureLayer, FeatureSet, MapService, TransferLimitExceeded
from .geometry import BoundingBox
from .query import Query, build_query_url
from .spatial import RefinedResult, query_partitioned, query_within, refine

__all__ = [
    "BoundingBox",
    "EsriRestError",
    "FeatureLayer",
    "FeatureSet",
    "MapService",
    "Query",
    "RefinedResult",
    "RestClient",
    "TransferLimitExceeded",
    "build_query_url",
    "query_partitioned",
    "query_within",
    "refine",
]
