"""Back-projection of matched reference keypoints to 3D."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..camera import CameraIntrinsics
from ..features import Features, Matches


@dataclass
class ReconstructedPoints:
    """3D-2D correspondences ready for PnP.

    All arrays are index-aligned: entry i of each comes from ``matches``
    entry i.

    Attributes:
        points_3d: Nx3 positions in the reference camera frame (meters)
        source_pixels: Nx2 pixel positions in the source (device) image
        matches: The matches the points were built from
    """

    points_3d: np.ndarray  # (N, 3) float64
    source_pixels: np.ndarray  # (N, 2) float64
    matches: Matches

    def __len__(self) -> int:
        """Return number of reconstructed points."""
        return len(self.points_3d)


class PointReconstructor:
    """Back-projects repaired reference keypoints with the pinhole model.

    For a reference pixel (u, v) with depth Z (meters):

        X = (u - cx) * Z / fx
        Y = (v - cy) * Z / fy
    """

    def __init__(self, depth_scale: float) -> None:
        """Initialize reconstructor.

        Args:
            depth_scale: Depth map units per meter (1000 for millimeters)
        """
        self._depth_scale = depth_scale

    def reconstruct(
        self,
        matches: Matches,
        source: Features,
        reference: Features,
        depth_map: np.ndarray,
        reference_intrinsics: CameraIntrinsics,
    ) -> ReconstructedPoints:
        """Build 3D points for the reference side of each match.

        Depth is read at the reference pixel rounded to the nearest
        integer pixel, the same pixel the depth repair wrote to. The 3D
        point uses the sub-pixel keypoint position.

        Args:
            matches: Matches with valid depth at their reference pixel
            source: Source (device) features
            reference: Reference camera features
            depth_map: Repaired HxW depth image
            reference_intrinsics: Reference camera intrinsics

        Returns:
            ReconstructedPoints aligned with ``matches``
        """
        if len(matches) == 0:
            return ReconstructedPoints(
                points_3d=np.empty((0, 3), dtype=np.float64),
                source_pixels=np.empty((0, 2), dtype=np.float64),
                matches=matches,
            )

        reference_px = matches.reference_pixels(reference).astype(np.float64)
        rounded = np.rint(reference_px).astype(np.int64)
        depths = depth_map[rounded[:, 1], rounded[:, 0]].astype(np.float64) / self._depth_scale

        points_3d = reference_intrinsics.backproject(reference_px, depths)
        source_px = matches.source_pixels(source).astype(np.float64)

        return ReconstructedPoints(points_3d=points_3d, source_pixels=source_px, matches=matches)

    @property
    def depth_scale(self) -> float:
        """Return depth map units per meter."""
        return self._depth_scale
