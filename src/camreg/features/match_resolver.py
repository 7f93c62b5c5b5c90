"""Removal of duplicate and contradicting correspondences."""

from __future__ import annotations

import logging

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import cKDTree
from scipy.spatial.distance import pdist

from .descriptor_matcher import Matches
from .feature_detector import Features

logger = logging.getLogger(__name__)


class MatchConsistencyResolver:
    """Makes every source image point map to at most one reference point.

    The device and the feature memory can report several keypoints at
    (almost) the same pixel, so raw matches often contain duplicates. The
    resolver:

    1. drops matches with a descriptor distance above the matching
       threshold;
    2. groups the remaining matches whose source pixels are within the
       merge distance of each other (transitively, so the grouping does not
       depend on the order of the matches);
    3. keeps each group as a single match if all its reference pixels are
       also within the merge distance of each other, with the first match
       of the group as representative and the group's mean distance;
       otherwise the group is contradicting and is dropped entirely.

    Applying the resolver to its own output returns the output unchanged.
    """

    def __init__(self, matching_threshold: float, merge_distance: float) -> None:
        """Initialize resolver.

        Args:
            matching_threshold: Maximum descriptor distance of a kept match
            merge_distance: Pixel distance under which two keypoints are
                considered the same point
        """
        self._matching_threshold = matching_threshold
        self._merge_distance = merge_distance

    def resolve(self, matches: Matches, source: Features, reference: Features) -> Matches:
        """Filter, merge and disambiguate matches.

        Args:
            matches: Raw matches between source and reference features
            source: Source (device) features the matches index into
            reference: Reference features the matches index into

        Returns:
            Consistent matches, in the input order of their representatives
        """
        candidates = matches.filter_by_distance(self._matching_threshold)
        if len(candidates) < 2:
            return candidates

        source_px = candidates.source_pixels(source).astype(np.float64)
        reference_px = candidates.reference_pixels(reference).astype(np.float64)

        groups = self._group_by_source(source_px)

        keep: list[int] = []
        distances = candidates.distances.copy()
        num_ambiguous = 0
        num_merged = 0
        for members in groups:
            if len(members) == 1:
                keep.append(members[0])
                continue

            if pdist(reference_px[members]).max() > self._merge_distance:
                num_ambiguous += len(members)
                continue

            representative = members[0]
            distances[representative] = candidates.distances[members].mean(dtype=np.float64)
            keep.append(representative)
            num_merged += len(members) - 1

        keep.sort()
        logger.debug(
            "Resolved %d matches: %d within threshold, %d merged, %d ambiguous dropped, %d kept",
            len(matches),
            len(candidates),
            num_merged,
            num_ambiguous,
            len(keep),
        )

        keep_idx = np.asarray(keep, dtype=np.int64)
        return Matches(
            source_indices=candidates.source_indices[keep_idx],
            reference_indices=candidates.reference_indices[keep_idx],
            distances=distances[keep_idx],
        )

    def _group_by_source(self, source_px: np.ndarray) -> list[list[int]]:
        """Partition match indices into groups of nearby source pixels.

        Returns:
            Groups as ascending index lists, ordered by their first index
        """
        n = len(source_px)
        pairs = cKDTree(source_px).query_pairs(r=self._merge_distance, output_type="ndarray")
        if len(pairs) == 0:
            return [[i] for i in range(n)]

        adjacency = coo_matrix(
            (np.ones(len(pairs), dtype=np.int8), (pairs[:, 0], pairs[:, 1])),
            shape=(n, n),
        )
        _, labels = connected_components(adjacency, directed=False)

        groups: dict[int, list[int]] = {}
        for i, label in enumerate(labels):
            groups.setdefault(int(label), []).append(i)
        return list(groups.values())

    @property
    def matching_threshold(self) -> float:
        """Return the maximum descriptor distance of a kept match."""
        return self._matching_threshold

    @property
    def merge_distance(self) -> float:
        """Return the keypoint merge distance in pixels."""
        return self._merge_distance
