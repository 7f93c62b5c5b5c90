"""Repair of missing depth samples at reference keypoints."""

from __future__ import annotations

import logging

import numpy as np

from ..errors import InputError
from ..features import Features, Matches

logger = logging.getLogger(__name__)

RING_WIDTH_PX = 10.0


def _search_window(
    shape: tuple[int, int], x: int, y: int, radius: float
) -> tuple[slice, slice, np.ndarray]:
    """Return the clipped square window around (x, y) and its distance grid.

    Returns:
        Tuple of (row slice, column slice, distances from (x, y) of every
        pixel of the window)
    """
    r = int(np.floor(radius))
    height, width = shape
    y0, y1 = max(0, y - r), min(height, y + r + 1)
    x0, x1 = max(0, x - r), min(width, x + r + 1)
    ys, xs = np.mgrid[y0:y1, x0:x1]
    distances = np.hypot(xs - x, ys - y)
    return slice(y0, y1), slice(x0, x1), distances


def find_nearest_nonzero_pixel(
    depth_map: np.ndarray, x: int, y: int, max_distance: float
) -> float | None:
    """Find the distance of the closest valid depth sample to (x, y).

    Args:
        depth_map: HxW depth image, 0 = invalid
        x: Pixel column
        y: Pixel row
        max_distance: Search bound in pixels (inclusive)

    Returns:
        Distance in pixels (0 if (x, y) itself is valid), or None if no
        valid sample lies within ``max_distance``
    """
    rows, cols, distances = _search_window(depth_map.shape, x, y, max_distance)
    valid = (depth_map[rows, cols] != 0) & (distances <= max_distance)
    if not valid.any():
        return None
    return float(distances[valid].min())


def find_lowest_nonzero_in_ring(
    depth_map: np.ndarray, x: int, y: int, min_radius: float, max_radius: float
) -> tuple[int, int] | None:
    """Find the valid pixel with the lowest depth in a ring around (x, y).

    The ring holds the pixels with ``min_radius <= distance <= max_radius``.
    The window is scanned row by row, so among pixels with equal depth the
    top-most, then left-most, wins.

    Returns:
        (x, y) of the lowest-depth pixel, or None if the ring holds no
        valid sample
    """
    rows, cols, distances = _search_window(depth_map.shape, x, y, max_radius)
    window = depth_map[rows, cols]
    in_ring = (window != 0) & (distances >= min_radius) & (distances <= max_radius)
    if not in_ring.any():
        return None

    candidates = np.where(in_ring, window.astype(np.float64), np.inf)
    row, col = np.unravel_index(int(np.argmin(candidates)), candidates.shape)
    return cols.start + int(col), rows.start + int(row)


class DepthRepairer:
    """Fills missing depth at matched reference keypoints.

    Depth sensors report no depth (0) at many pixels, especially along
    object silhouettes where keypoints tend to be. For each match the
    repairer looks up the reference pixel p and:

    1. finds the nearest valid depth sample within the search radius, at
       distance d0;
    2. takes the lowest valid depth in the ring d0 <= r <= d0 + 10 px
       around p. Preferring the closest surface keeps foreground keypoints
       from picking up the background seen next to them;
    3. writes that depth at p, in the depth map itself.

    Matches with no valid sample within the search radius are dropped.
    """

    def __init__(self, search_radius: float, ring_width: float = RING_WIDTH_PX) -> None:
        """Initialize repairer.

        Args:
            search_radius: Maximum distance (pixels) of the nearest valid
                depth sample
            ring_width: Width (pixels) of the ring searched for the lowest
                depth
        """
        self._search_radius = search_radius
        self._ring_width = ring_width

    def repair(self, matches: Matches, reference: Features, depth_map: np.ndarray) -> Matches:
        """Repair depth at the reference pixel of every match.

        The depth map is modified in place.

        Args:
            matches: Matches whose reference indices point into ``reference``
            reference: Reference camera features
            depth_map: HxW depth image of the reference camera, 0 = invalid

        Returns:
            The matches that now have a valid depth, in input order

        Raises:
            InputError: If the depth map is not a non-empty 2D array
        """
        check_depth_map(depth_map)
        if len(matches) == 0:
            return matches

        height, width = depth_map.shape
        pixels = np.rint(matches.reference_pixels(reference)).astype(np.int64)
        keep = np.zeros(len(matches), dtype=bool)

        for i, (x, y) in enumerate(pixels):
            x, y = int(x), int(y)
            if not (0 <= x < width and 0 <= y < height):
                continue

            nearest = find_nearest_nonzero_pixel(depth_map, x, y, self._search_radius)
            if nearest is None:
                continue

            lowest = find_lowest_nonzero_in_ring(
                depth_map, x, y, nearest, nearest + self._ring_width
            )
            if lowest is None:
                continue

            depth_map[y, x] = depth_map[lowest[1], lowest[0]]
            keep[i] = depth_map[y, x] != 0

        logger.debug("Depth repair kept %d of %d matches", int(keep.sum()), len(matches))
        return matches.select(keep)

    @property
    def search_radius(self) -> float:
        """Return the nearest-sample search radius in pixels."""
        return self._search_radius


def check_depth_map(depth_map: np.ndarray) -> None:
    """Raise InputError unless ``depth_map`` is a non-empty numeric 2D array."""
    if depth_map is None:
        raise InputError("Depth map is None")
    if not isinstance(depth_map, np.ndarray):
        raise InputError(f"Depth map must be a numpy array, got {type(depth_map).__name__}")
    if depth_map.ndim != 2 or depth_map.size == 0:
        raise InputError(f"Depth map must be a non-empty 2D array, got shape {depth_map.shape}")
    if not (np.issubdtype(depth_map.dtype, np.integer) or np.issubdtype(depth_map.dtype, np.floating)):
        raise InputError(f"Depth map must be numeric, got {depth_map.dtype}")
