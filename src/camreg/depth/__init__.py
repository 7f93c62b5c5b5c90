"""Depth repair and 3D reconstruction on the reference camera side."""

from .depth_repair import (
    DepthRepairer,
    check_depth_map,
    find_lowest_nonzero_in_ring,
    find_nearest_nonzero_pixel,
)
from .reconstruction import PointReconstructor, ReconstructedPoints

__all__ = [
    # Depth repair
    "DepthRepairer",
    "check_depth_map",
    "find_nearest_nonzero_pixel",
    "find_lowest_nonzero_in_ring",
    # Reconstruction
    "PointReconstructor",
    "ReconstructedPoints",
]
