"""Pinhole camera intrinsics."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .errors import InputError


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model, no distortion)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def __post_init__(self) -> None:
        """Reject intrinsics that cannot describe a pinhole camera."""
        values = (self.fx, self.fy, self.cx, self.cy)
        if not all(np.isfinite(v) for v in values):
            raise InputError(f"Camera intrinsics must be finite, got {values}")
        if self.fx <= 0 or self.fy <= 0:
            raise InputError(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> CameraIntrinsics:
        """Create intrinsics from a 3x3 camera matrix.

        Only the top-left 3x3 block is read, so a 3x4 projection matrix
        is accepted as well.
        """
        K = np.asarray(K, dtype=np.float64)
        if K.ndim != 2 or K.shape[0] < 3 or K.shape[1] < 3:
            raise InputError(f"Camera matrix must be at least 3x3, got {K.shape}")
        return cls(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
        )

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def backproject(self, pixels: np.ndarray, depths: np.ndarray) -> np.ndarray:
        """Back-project pixels with metric depth into camera-frame 3D points.

        Args:
            pixels: Nx2 array of (u, v) pixel coordinates
            depths: (N,) depths along the optical axis, in meters

        Returns:
            Nx3 array of points (X, Y, Z) in the camera frame
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        z = np.asarray(depths, dtype=np.float64).reshape(-1)
        x = (pixels[:, 0] - self.cx) * z / self.fx
        y = (pixels[:, 1] - self.cy) * z / self.fy
        return np.column_stack([x, y, z])

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project camera-frame 3D points onto the image plane.

        Args:
            points: Nx3 array of points in the camera frame (Z > 0)

        Returns:
            Nx2 array of pixel coordinates
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        u = self.fx * points[:, 0] / points[:, 2] + self.cx
        v = self.fy * points[:, 1] / points[:, 2] + self.cy
        return np.column_stack([u, v])
