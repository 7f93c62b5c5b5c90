"""Outcome types of a registration cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..pose import SE3


class RegistrationStatus(Enum):
    """Outcome of one registration cycle. Exactly one per cycle."""

    ACCEPTED = "accepted"
    INVALID_INPUT = "invalid input"
    NO_FEATURES = "no features found"
    NO_DESCRIPTORS = "no descriptors"
    INSUFFICIENT_CORRESPONDENCES = "insufficient correspondences"
    SOLVE_FAILED = "solve failed"
    INSUFFICIENT_INLIERS = "insufficient inliers"
    REPROJECTION_ERROR_TOO_HIGH = "reprojection error too high"
    HEIGHT_ABOVE_MAX = "height above max"
    HEIGHT_BELOW_MIN = "height below min"
    ORIENTATION_DEVIATION_TOO_HIGH = "orientation deviation too high"

    @property
    def is_rejection(self) -> bool:
        """Return True for the acceptance gate's rejection reasons."""
        return self in _GATE_REJECTIONS


_GATE_REJECTIONS = frozenset(
    {
        RegistrationStatus.INSUFFICIENT_CORRESPONDENCES,
        RegistrationStatus.SOLVE_FAILED,
        RegistrationStatus.INSUFFICIENT_INLIERS,
        RegistrationStatus.REPROJECTION_ERROR_TOO_HIGH,
        RegistrationStatus.HEIGHT_ABOVE_MAX,
        RegistrationStatus.HEIGHT_BELOW_MIN,
        RegistrationStatus.ORIENTATION_DEVIATION_TOO_HIGH,
    }
)


@dataclass
class PoseEstimate:
    """A timestamped device pose.

    Attributes:
        position: Device position (3,) in ``frame_id``
        orientation: Unit quaternion (w, x, y, z) of the device orientation
        frame_id: Frame the pose is expressed in
        timestamp_ns: Timestamp of the device observation (nanoseconds)
        num_inliers: PnP inliers supporting the estimate
        reprojection_error: Mean inlier reprojection error (pixels)
    """

    position: np.ndarray
    orientation: np.ndarray
    frame_id: str
    timestamp_ns: int
    num_inliers: int = 0
    reprojection_error: float = 0.0

    def __post_init__(self) -> None:
        """Ensure arrays are proper types."""
        self.position = np.asarray(self.position, dtype=np.float64).flatten()
        self.orientation = np.asarray(self.orientation, dtype=np.float64).flatten()

    @classmethod
    def from_se3(
        cls,
        pose: SE3,
        frame_id: str,
        timestamp_ns: int,
        num_inliers: int = 0,
        reprojection_error: float = 0.0,
    ) -> PoseEstimate:
        """Create an estimate from an SE3 device pose."""
        return cls(
            position=pose.position,
            orientation=pose.to_quaternion(),
            frame_id=frame_id,
            timestamp_ns=timestamp_ns,
            num_inliers=num_inliers,
            reprojection_error=reprojection_error,
        )

    def to_se3(self) -> SE3:
        """Return the estimate as an SE3 transform T_frame_device."""
        qw, qx, qy, qz = self.orientation
        return SE3.from_quaternion(qw, qx, qy, qz, self.position)

    @property
    def height(self) -> float:
        """Return the Z coordinate of the position."""
        return float(self.position[2])


@dataclass
class RegistrationTiming:
    """Timing breakdown for a single cycle, in milliseconds."""

    detection_ms: float = 0.0
    matching_ms: float = 0.0
    resolve_ms: float = 0.0
    depth_repair_ms: float = 0.0
    reconstruction_ms: float = 0.0
    pnp_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class RegistrationResult:
    """Output of the pose estimator for a single cycle.

    ``estimate`` is set only when ``status`` is ACCEPTED. The counts are
    filled as far as the cycle got before it ended.
    """

    status: RegistrationStatus
    estimate: PoseEstimate | None = None
    message: str = ""
    num_raw_matches: int = 0
    num_resolved_matches: int = 0
    num_correspondences: int = 0
    num_inliers: int = 0
    reprojection_error: float = float("inf")
    timing: RegistrationTiming = field(default_factory=RegistrationTiming)

    @property
    def is_accepted(self) -> bool:
        """Return True if the cycle produced an accepted estimate."""
        return self.status == RegistrationStatus.ACCEPTED
