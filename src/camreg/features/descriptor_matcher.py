"""Nearest-neighbour descriptor matching between device and reference features."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from .feature_detector import Features


@dataclass
class Matches:
    """Correspondences between source (device) and reference keypoints.

    Attributes:
        source_indices: Indices into the source features' keypoints
        reference_indices: Indices into the reference features' keypoints
        distances: Descriptor distances of the matches
    """

    source_indices: np.ndarray  # (N,) int
    reference_indices: np.ndarray  # (N,) int
    distances: np.ndarray  # (N,) float32

    def __post_init__(self) -> None:
        """Normalize dtypes and check the arrays are index-aligned."""
        self.source_indices = np.asarray(self.source_indices, dtype=np.int32).reshape(-1)
        self.reference_indices = np.asarray(self.reference_indices, dtype=np.int32).reshape(-1)
        self.distances = np.asarray(self.distances, dtype=np.float32).reshape(-1)
        n = len(self.source_indices)
        if len(self.reference_indices) != n or len(self.distances) != n:
            raise ValueError(
                "Match arrays must have equal lengths, got "
                f"{n}, {len(self.reference_indices)}, {len(self.distances)}"
            )

    @classmethod
    def empty(cls) -> Matches:
        """Create an empty set of matches."""
        return cls(
            source_indices=np.empty(0, dtype=np.int32),
            reference_indices=np.empty(0, dtype=np.int32),
            distances=np.empty(0, dtype=np.float32),
        )

    def __len__(self) -> int:
        """Return number of matches."""
        return len(self.source_indices)

    def select(self, indices: np.ndarray) -> Matches:
        """Return the matches at ``indices`` (an index array or boolean mask)."""
        indices = np.asarray(indices)
        return Matches(
            source_indices=self.source_indices[indices],
            reference_indices=self.reference_indices[indices],
            distances=self.distances[indices],
        )

    def filter_by_distance(self, max_distance: float) -> Matches:
        """Return the matches whose distance does not exceed ``max_distance``."""
        return self.select(self.distances <= max_distance)

    def source_pixels(self, source: Features) -> np.ndarray:
        """Return Nx2 source pixel positions of the matches."""
        if len(self) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return source.points[self.source_indices]

    def reference_pixels(self, reference: Features) -> np.ndarray:
        """Return Nx2 reference pixel positions of the matches."""
        if len(self) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return reference.points[self.reference_indices]

    def check_indices(self, num_source: int, num_reference: int) -> bool:
        """Return True if every index is valid for the given keypoint counts."""
        if len(self) == 0:
            return True
        return bool(
            self.source_indices.min() >= 0
            and self.reference_indices.min() >= 0
            and self.source_indices.max() < num_source
            and self.reference_indices.max() < num_reference
        )


class DescriptorMatcher:
    """Brute-force Hamming matcher.

    Each source (query) descriptor gets its single nearest reference
    (train) descriptor. There is no ratio test and no cross-check: one
    reference keypoint can be the best match of several source keypoints.
    Disambiguation is done afterwards by :class:`MatchConsistencyResolver`.
    """

    def __init__(self, norm_type: int = cv2.NORM_HAMMING) -> None:
        """Initialize matcher.

        Args:
            norm_type: OpenCV distance norm. Hamming for ORB descriptors.
        """
        self._bf_matcher = cv2.BFMatcher(norm_type, crossCheck=False)

    def match(self, source: Features, reference: Features) -> Matches:
        """Match every source descriptor to its nearest reference descriptor.

        Args:
            source: Device features (query)
            reference: Reference camera features, memory features included
                (train)

        Returns:
            Matches in source order
        """
        if (
            len(source) == 0
            or len(reference) == 0
            or source.descriptors is None
            or reference.descriptors is None
        ):
            return Matches.empty()

        raw = self._bf_matcher.match(source.descriptors, reference.descriptors)
        if len(raw) == 0:
            return Matches.empty()

        return Matches(
            source_indices=np.array([m.queryIdx for m in raw], dtype=np.int32),
            reference_indices=np.array([m.trainIdx for m in raw], dtype=np.int32),
            distances=np.array([m.distance for m in raw], dtype=np.float32),
        )
