from .layer import FeatureLayer, FeatureSet, LayerInfo, MapService, TransferLimitExceeded

__all__ = ["FeatureLayer", "FeatureSet", "LayerInfo", "MapService", "TransferLimitExceeded"]
