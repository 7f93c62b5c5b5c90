"""Sequential acceptance checks for a device pose estimate."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import EstimatorParameters
from ..pose import SE3, angle_from_z_axis
from .pose_solver import MIN_PNP_POINTS, PnPResult
from .results import RegistrationStatus

logger = logging.getLogger(__name__)


@dataclass
class GateDecision:
    """Outcome of the validation gate.

    Attributes:
        status: ACCEPTED or the first rejection reason met
        world_pose: Device pose T_world_device, set whenever the solver
            succeeded and the pose could be moved to the world frame
        orientation_deviation_deg: Angle between the device and reference
            camera optical axes, set once that check ran
    """

    status: RegistrationStatus
    world_pose: SE3 | None = None
    orientation_deviation_deg: float | None = None

    @property
    def accepted(self) -> bool:
        """Return True if every check passed."""
        return self.status == RegistrationStatus.ACCEPTED


class ValidationGate:
    """Straight-line rejection chain for pose estimates.

    Checks run in a fixed order and the first failing one decides:

    1. correspondence count (before solving)
    2. solver success
    3. inlier count
    4. mean inlier reprojection error
    5. world-frame height (above max, then below min)
    6. angle between the device optical axis and the reference camera's
       optical axis

    Tightening any threshold can only turn acceptances into rejections.
    """

    def __init__(
        self,
        reference_to_world: SE3,
        minimum_matches_number: int,
        reprojection_error_threshold: float,
        min_pose_height: float,
        max_pose_height: float,
        orientation_threshold_deg: float,
    ) -> None:
        """Initialize gate.

        Args:
            reference_to_world: Static transform T_world_reference
            minimum_matches_number: Minimum correspondences and inliers;
                values below 4 behave as 4
            reprojection_error_threshold: Maximum mean inlier reprojection
                error in pixels
            min_pose_height: Minimum world-frame Z of the device (meters)
            max_pose_height: Maximum world-frame Z of the device (meters)
            orientation_threshold_deg: Maximum angle between the device and
                reference camera optical axes, in degrees
        """
        self._reference_to_world = reference_to_world
        self._min_matches = max(MIN_PNP_POINTS, minimum_matches_number)
        self._reprojection_threshold = reprojection_error_threshold
        self._min_height = min_pose_height
        self._max_height = max_pose_height
        self._orientation_threshold = orientation_threshold_deg

    @classmethod
    def from_parameters(
        cls, parameters: EstimatorParameters, reference_to_world: SE3
    ) -> ValidationGate:
        """Create a gate from estimator parameters."""
        return cls(
            reference_to_world=reference_to_world,
            minimum_matches_number=parameters.effective_minimum_matches,
            reprojection_error_threshold=parameters.reprojection_error_discard_threshold,
            min_pose_height=parameters.min_pose_height,
            max_pose_height=parameters.max_pose_height,
            orientation_threshold_deg=parameters.orientation_difference_threshold_deg,
        )

    def check_correspondences(self, num_correspondences: int) -> RegistrationStatus | None:
        """Run the first check, before the solver is called.

        Returns:
            INSUFFICIENT_CORRESPONDENCES, or None if the count is enough
        """
        if num_correspondences < self._min_matches:
            logger.warning(
                "Not enough correspondences to determine position (%d < %d)",
                num_correspondences,
                self._min_matches,
            )
            return RegistrationStatus.INSUFFICIENT_CORRESPONDENCES
        return None

    def evaluate(self, num_correspondences: int, pnp_result: PnPResult) -> GateDecision:
        """Run the whole chain on a solver result.

        Args:
            num_correspondences: Number of 3D-2D correspondences given to the
                solver
            pnp_result: Solver output; its pose is T_reference_device

        Returns:
            GateDecision with ACCEPTED or the first rejection reason
        """
        status = self.check_correspondences(num_correspondences)
        if status is not None:
            return GateDecision(status)

        if not pnp_result.success or pnp_result.pose is None:
            logger.warning("Failed to compute pose")
            return GateDecision(RegistrationStatus.SOLVE_FAILED)

        if pnp_result.num_inliers < self._min_matches:
            logger.warning(
                "Not enough match inliers (%d < %d)", pnp_result.num_inliers, self._min_matches
            )
            return GateDecision(RegistrationStatus.INSUFFICIENT_INLIERS)

        if pnp_result.reprojection_error > self._reprojection_threshold:
            logger.warning(
                "Reprojection error %.3f beyond threshold %.3f",
                pnp_result.reprojection_error,
                self._reprojection_threshold,
            )
            return GateDecision(RegistrationStatus.REPROJECTION_ERROR_TOO_HIGH)

        world_pose = self._reference_to_world @ pnp_result.pose
        height = float(world_pose.position[2])
        if height > self._max_height:
            logger.warning("Pose height %.3f above max %.3f", height, self._max_height)
            return GateDecision(RegistrationStatus.HEIGHT_ABOVE_MAX, world_pose)
        if height < self._min_height:
            logger.warning("Pose height %.3f below min %.3f", height, self._min_height)
            return GateDecision(RegistrationStatus.HEIGHT_BELOW_MIN, world_pose)

        deviation = angle_from_z_axis(pnp_result.pose)
        if deviation > self._orientation_threshold:
            logger.warning(
                "Orientation deviation %.1f deg above threshold %.1f deg",
                deviation,
                self._orientation_threshold,
            )
            return GateDecision(
                RegistrationStatus.ORIENTATION_DEVIATION_TOO_HIGH, world_pose, deviation
            )

        return GateDecision(RegistrationStatus.ACCEPTED, world_pose, deviation)

    @property
    def reference_to_world(self) -> SE3:
        """Return the static transform T_world_reference."""
        return self._reference_to_world

    @property
    def minimum_matches(self) -> int:
        """Return the effective minimum correspondence and inlier count."""
        return self._min_matches
