"""Estimator configuration and its YAML loaders."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .errors import ConfigError
from .pose import SE3


@dataclass(frozen=True)
class EstimatorParameters:
    """Parameters for one pose estimator. Immutable for the duration of a cycle.

    Every field must be supplied; the pipeline does not fall back on
    built-in values.

    Attributes:
        pnp_iterations: Maximum RANSAC iterations for solvePnPRansac.
        pnp_confidence: RANSAC confidence, in (0, 1).
        pnp_reprojection_error: RANSAC inlier threshold in pixels.
        pnp_refine_with_inliers: Refine the RANSAC pose with iterative PnP
            over all inliers.
        matching_threshold: Maximum descriptor distance for a correspondence
            to be kept. Lower means fewer, better matches.
        reprojection_error_discard_threshold: Estimates whose mean inlier
            reprojection error exceeds this (pixels) are rejected.
        keypoint_merge_distance: Keypoints closer than this (pixels) are
            considered the same image point.
        depth_search_radius: Maximum distance (pixels) searched for a valid
            depth sample around a keypoint with missing depth.
        depth_scale: Depth map units per meter (1000 for millimeter maps).
        minimum_matches_number: Minimum correspondences and inliers needed
            to accept an estimate. Values below 4 behave as 4.
        min_pose_height: Minimum accepted world-frame height (meters).
        max_pose_height: Maximum accepted world-frame height (meters).
        orientation_difference_threshold_deg: Maximum accepted angle between
            the device optical axis and the reference camera optical axis, in
            degrees.
        enable_features_memory: Use and update the feature memory.
        orb_max_points: Maximum ORB features extracted from the reference
            image.
        orb_scale_factor: ORB pyramid decimation ratio, must be > 1.
        orb_levels_number: Number of ORB pyramid levels.
    """

    pnp_iterations: int
    pnp_confidence: float
    pnp_reprojection_error: float
    pnp_refine_with_inliers: bool
    matching_threshold: float
    reprojection_error_discard_threshold: float
    keypoint_merge_distance: float
    depth_search_radius: float
    depth_scale: float
    minimum_matches_number: int
    min_pose_height: float
    max_pose_height: float
    orientation_difference_threshold_deg: float
    enable_features_memory: bool
    orb_max_points: int
    orb_scale_factor: float
    orb_levels_number: int

    def __post_init__(self) -> None:
        """Validate parameter ranges."""
        if self.pnp_iterations <= 0:
            raise ConfigError(f"pnp_iterations must be positive, got {self.pnp_iterations}")
        if not 0.0 < self.pnp_confidence < 1.0:
            raise ConfigError(f"pnp_confidence must be in (0, 1), got {self.pnp_confidence}")
        for name in (
            "pnp_reprojection_error",
            "reprojection_error_discard_threshold",
            "depth_search_radius",
            "depth_scale",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("matching_threshold", "keypoint_merge_distance"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.minimum_matches_number < 0:
            raise ConfigError(
                f"minimum_matches_number must be non-negative, got {self.minimum_matches_number}"
            )
        if self.min_pose_height > self.max_pose_height:
            raise ConfigError(
                f"min_pose_height ({self.min_pose_height}) exceeds "
                f"max_pose_height ({self.max_pose_height})"
            )
        if not 0.0 <= self.orientation_difference_threshold_deg <= 180.0:
            raise ConfigError(
                "orientation_difference_threshold_deg must be in [0, 180], "
                f"got {self.orientation_difference_threshold_deg}"
            )
        if self.orb_max_points <= 0 or self.orb_levels_number <= 0:
            raise ConfigError("orb_max_points and orb_levels_number must be positive")
        if self.orb_scale_factor <= 1.0:
            raise ConfigError(f"orb_scale_factor must be > 1, got {self.orb_scale_factor}")

    @property
    def effective_minimum_matches(self) -> int:
        """Return the minimum match count, never below the 4 points PnP needs."""
        return max(4, self.minimum_matches_number)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EstimatorParameters:
        """Create parameters from a mapping, rejecting missing and unknown keys."""
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping of parameters, got {type(data).__name__}")

        names = {f.name for f in fields(cls)}
        missing = sorted(names - data.keys())
        unknown = sorted(data.keys() - names)
        if missing:
            raise ConfigError(f"Missing estimator parameters: {', '.join(missing)}")
        if unknown:
            raise ConfigError(f"Unknown estimator parameters: {', '.join(unknown)}")

        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> EstimatorParameters:
        """Load parameters from a YAML file.

        The file is either a flat mapping of parameters or holds one under
        an ``estimator`` key.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If the file content is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if isinstance(data, dict) and "estimator" in data:
            data = data["estimator"]
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Return the parameters as a plain dictionary."""
        return asdict(self)


def load_reference_to_world(yaml_path: str | Path) -> SE3:
    """Load the static reference-camera-to-world transform from YAML.

    The file stores the row-major 4x4 matrix ``T_world_reference`` as::

        T_world_reference:
          data: [r00, r01, r02, tx, ..., 0, 0, 0, 1]

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the transform is missing or malformed
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Transform file not found: {yaml_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    values = data.get("T_world_reference", {}).get("data")
    if values is None or len(values) != 16:
        raise ConfigError(f"Invalid T_world_reference transform in {yaml_path}")

    T = np.array(values, dtype=np.float64).reshape(4, 4)
    if not np.allclose(T[3], [0.0, 0.0, 0.0, 1.0]):
        raise ConfigError(f"T_world_reference last row must be [0, 0, 0, 1] in {yaml_path}")
    if not np.allclose(T[:3, :3] @ T[:3, :3].T, np.eye(3), atol=1e-6):
        raise ConfigError(f"T_world_reference rotation is not orthonormal in {yaml_path}")
    return SE3.from_matrix(T)
