"""Feature memory shared across registration cycles."""

from .features_memory import (
    FeatureMemoryProtocol,
    FeaturesMemory,
    MemoryFeature,
    memory_to_features,
)

__all__ = [
    "FeatureMemoryProtocol",
    "FeaturesMemory",
    "MemoryFeature",
    "memory_to_features",
]
