"""Shared fixtures: estimator parameters and a synthetic two-camera scene."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from camreg import SE3, CameraIntrinsics, EstimatorParameters, Features, Matches

BASE_PARAMETERS = {
    "pnp_iterations": 1000,
    "pnp_confidence": 0.99,
    "pnp_reprojection_error": 2.0,
    "pnp_refine_with_inliers": True,
    "matching_threshold": 50.0,
    "reprojection_error_discard_threshold": 3.0,
    "keypoint_merge_distance": 2.0,
    "depth_search_radius": 100.0,
    "depth_scale": 1000.0,
    "minimum_matches_number": 4,
    "min_pose_height": -1.0,
    "max_pose_height": 1.0,
    "orientation_difference_threshold_deg": 45.0,
    "enable_features_memory": False,
    "orb_max_points": 500,
    "orb_scale_factor": 1.2,
    "orb_levels_number": 8,
}

REFERENCE_INTRINSICS = CameraIntrinsics(fx=525.0, fy=525.0, cx=320.0, cy=240.0)
SOURCE_INTRINSICS = CameraIntrinsics(fx=600.0, fy=600.0, cx=320.0, cy=240.0)
IMAGE_SHAPE = (480, 640)

# Reference keypoints on a 5x2 grid, each with its own depth (millimeters)
REFERENCE_PIXELS = np.array(
    [[x, y] for y in (140, 340) for x in (120, 220, 320, 420, 520)], dtype=np.float64
)
DEPTHS_MM = np.array([1500, 1800, 2100, 2400, 2700, 2000, 2300, 2600, 1700, 3000])
PATCH_HALF_SIZE = 12

DEVICE_POSE = SE3(
    rotation=Rotation.from_euler("y", 5.0, degrees=True).as_matrix(),
    translation=np.array([0.1, -0.05, 0.2]),
)


@dataclass
class SyntheticScene:
    """Zero-noise scene seen by the reference camera and by the device."""

    source: Features
    reference: Features
    matches: Matches
    depth_map: np.ndarray
    points_3d: np.ndarray
    device_pose: SE3
    source_intrinsics: CameraIntrinsics
    reference_intrinsics: CameraIntrinsics

    def fresh_depth_map(self) -> np.ndarray:
        """Return a copy of the depth map, since cycles repair it in place."""
        return self.depth_map.copy()


def make_parameters(**overrides) -> EstimatorParameters:
    """Build estimator parameters from the test baseline."""
    values = dict(BASE_PARAMETERS)
    values.update(overrides)
    return EstimatorParameters(**values)


def make_depth_map(pixels: np.ndarray, depths_mm: np.ndarray) -> np.ndarray:
    """Depth map that is invalid everywhere except a square patch per pixel."""
    depth_map = np.zeros(IMAGE_SHAPE, dtype=np.uint16)
    for (x, y), depth in zip(pixels.astype(int), depths_mm):
        depth_map[
            y - PATCH_HALF_SIZE : y + PATCH_HALF_SIZE + 1,
            x - PATCH_HALF_SIZE : x + PATCH_HALF_SIZE + 1,
        ] = depth
    return depth_map


def make_scene(num_points: int = 10, device_pose: SE3 = DEVICE_POSE) -> SyntheticScene:
    """Build a scene whose device pixels exactly satisfy ``device_pose``."""
    reference_px = REFERENCE_PIXELS[:num_points]
    depths_mm = DEPTHS_MM[:num_points]

    points_3d = REFERENCE_INTRINSICS.backproject(reference_px, depths_mm / 1000.0)
    points_device = device_pose.inverse().transform_points(points_3d)
    source_px = SOURCE_INTRINSICS.project(points_device)

    rng = np.random.default_rng(7)
    descriptors = rng.integers(0, 256, size=(num_points, 32), dtype=np.uint8)

    return SyntheticScene(
        source=Features.from_arrays(source_px, descriptors),
        reference=Features.from_arrays(reference_px, descriptors.copy()),
        matches=Matches(
            source_indices=np.arange(num_points),
            reference_indices=np.arange(num_points),
            distances=np.full(num_points, 10.0),
        ),
        depth_map=make_depth_map(reference_px, depths_mm),
        points_3d=points_3d,
        device_pose=device_pose,
        source_intrinsics=SOURCE_INTRINSICS,
        reference_intrinsics=REFERENCE_INTRINSICS,
    )


@pytest.fixture
def parameters() -> EstimatorParameters:
    """Baseline estimator parameters, feature memory disabled."""
    return make_parameters()


@pytest.fixture
def scene() -> SyntheticScene:
    """Ten-point zero-noise scene."""
    return make_scene()
