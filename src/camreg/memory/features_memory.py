"""Memory of reference-side features that produced accepted estimates."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Protocol, Sequence

import cv2
import numpy as np

from ..features import Features

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryFeature:
    """A reference keypoint remembered from an accepted estimate.

    Attributes:
        keypoint: Keypoint in the reference camera image
        descriptor: Its descriptor row (uint8)
        observer_distance: Distance (meters) from the device to the 3D point
            when the feature was saved
        observer_direction: Vector from the device to the 3D point, in the
            reference camera frame
        raw_depth: Depth map value at the keypoint when the feature was saved
    """

    keypoint: cv2.KeyPoint
    descriptor: np.ndarray
    observer_distance: float
    observer_direction: np.ndarray
    raw_depth: float


class FeatureMemoryProtocol(Protocol):
    """Interface the pose estimator uses to talk to a feature memory."""

    def list_features(self) -> Sequence[MemoryFeature]:
        """Return the remembered features."""
        ...

    def retain_foreground(self, depth_map: np.ndarray) -> None:
        """Forget features that the current depth map shows are gone."""
        ...

    def append(self, feature: MemoryFeature) -> None:
        """Remember a feature."""
        ...


class FeaturesMemory:
    """In-process, append-only feature memory with FIFO eviction.

    Features are appended by one estimator at a time. A feature is
    forgotten when the memory is full, or when the depth now measured at its
    keypoint is farther than the depth it was saved with: the surface that
    carried it has moved away and the pixel now shows the background.
    """

    def __init__(self, max_features: int, depth_tolerance: float) -> None:
        """Initialize memory.

        Args:
            max_features: Capacity; the oldest features are evicted first
            depth_tolerance: Allowed increase of the depth at a feature,
                in depth map units, before it is considered gone
        """
        if max_features <= 0:
            raise ValueError(f"max_features must be positive, got {max_features}")
        self._features: deque[MemoryFeature] = deque(maxlen=max_features)
        self._depth_tolerance = depth_tolerance

    def list_features(self) -> tuple[MemoryFeature, ...]:
        """Return a snapshot of the remembered features, oldest first."""
        return tuple(self._features)

    def append(self, feature: MemoryFeature) -> None:
        """Remember a feature, evicting the oldest if the memory is full."""
        self._features.append(feature)

    def retain_foreground(self, depth_map: np.ndarray) -> None:
        """Drop features whose keypoint now reads farther than when saved.

        Features outside the depth map, or over invalid (zero) depth, are
        kept.
        """
        if len(self._features) == 0:
            return

        height, width = depth_map.shape[:2]
        kept = []
        for feature in self._features:
            x, y = (int(v) for v in np.rint(feature.keypoint.pt))
            if 0 <= x < width and 0 <= y < height:
                current = float(depth_map[y, x])
                if current != 0 and current > feature.raw_depth + self._depth_tolerance:
                    continue
            kept.append(feature)

        removed = len(self._features) - len(kept)
        if removed:
            logger.debug("Removed %d non-background features from memory", removed)
        self._features = deque(kept, maxlen=self._features.maxlen)

    def __len__(self) -> int:
        """Return number of remembered features."""
        return len(self._features)


def memory_to_features(features: Sequence[MemoryFeature]) -> Features:
    """Pack memory features into a Features block, keypoints in order."""
    if len(features) == 0:
        return Features.empty()
    return Features(
        keypoints=tuple(f.keypoint for f in features),
        descriptors=np.vstack([np.asarray(f.descriptor, dtype=np.uint8).reshape(1, -1) for f in features]),
    )
