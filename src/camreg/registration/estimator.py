"""Per-device pose estimator orchestrating the registration pipeline.

A cycle runs, in order:
1. Input validation
2. Reference feature detection (``process_features`` only), plus the
   feature memory
3. Descriptor matching (``process_features`` only)
4. Match consistency resolution
5. Depth repair at the reference keypoints
6. Back-projection to 3D
7. PnP + RANSAC, seeded with the last accepted estimate
8. Validation gate, then state update and feature memory update
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import numpy as np

from ..camera import CameraIntrinsics
from ..config import EstimatorParameters
from ..depth import DepthRepairer, PointReconstructor, ReconstructedPoints, check_depth_map
from ..errors import ConfigError, InputError
from ..features import (
    DescriptorMatcher,
    FeatureDetector,
    Features,
    MatchConsistencyResolver,
    Matches,
    to_grayscale,
)
from ..memory import FeatureMemoryProtocol, MemoryFeature, memory_to_features
from ..pose import SE3
from .pose_solver import PnPResult, PoseSolver
from .results import PoseEstimate, RegistrationResult, RegistrationStatus, RegistrationTiming
from .validation import ValidationGate

logger = logging.getLogger(__name__)


@dataclass
class EstimatorState:
    """Last known good estimate of one device.

    Only an accepted cycle changes it; it is never reset.

    Attributes:
        last_estimate: Last accepted pose, world frame
        last_reference_pose: Last accepted device pose in the reference
            camera frame, T_reference_device. Seeds the next solve.
        last_match_count: Correspondences used by the last accepted estimate
        last_reprojection_error: Reprojection error of the last accepted
            estimate (pixels)
        has_estimate: True once an estimate has been accepted
    """

    last_estimate: PoseEstimate | None = None
    last_reference_pose: SE3 | None = None
    last_match_count: int = 0
    last_reprojection_error: float = float("inf")
    has_estimate: bool = False

    def accept(
        self,
        estimate: PoseEstimate,
        reference_pose: SE3,
        match_count: int,
        reprojection_error: float,
    ) -> None:
        """Overwrite the state with a newly accepted estimate."""
        self.last_estimate = estimate
        self.last_reference_pose = reference_pose
        self.last_match_count = match_count
        self.last_reprojection_error = reprojection_error
        self.has_estimate = True


def _as_intrinsics(intrinsics: CameraIntrinsics | np.ndarray) -> CameraIntrinsics:
    """Accept either CameraIntrinsics or a 3x3 (or 3x4) camera matrix."""
    if isinstance(intrinsics, CameraIntrinsics):
        return intrinsics
    if intrinsics is None:
        raise InputError("Camera intrinsics are missing")
    return CameraIntrinsics.from_matrix(intrinsics)


def _check_source_features(source: Features) -> None:
    """Raise InputError unless the device features are usable for matching."""
    if source is None or len(source) == 0:
        raise InputError("Device reported no keypoints")
    descriptors = source.descriptors
    if descriptors is None or descriptors.ndim != 2 or len(descriptors) != len(source):
        raise InputError("Device descriptors are missing or do not match its keypoints")
    if descriptors.dtype != np.uint8:
        raise InputError(f"Device descriptors must be uint8, got {descriptors.dtype}")


class PoseEstimator:
    """Estimates the world pose of one mobile device against a fixed depth camera.

    Each instance owns the state of exactly one device. Calls must be
    serialized: one cycle at a time per instance. Separate devices use
    separate instances, which may share a feature memory.
    """

    def __init__(
        self,
        device_id: str,
        parameters: EstimatorParameters,
        reference_to_world: SE3,
        features_memory: FeatureMemoryProtocol | None = None,
        world_frame_id: str = "world",
    ) -> None:
        """Initialize estimator.

        Args:
            device_id: Identifier of the tracked device
            parameters: Estimator parameters
            reference_to_world: Static transform T_world_reference of the
                fixed camera
            features_memory: Feature memory, required when
                ``parameters.enable_features_memory`` is set
            world_frame_id: Frame id stamped on the estimates

        Raises:
            ConfigError: If the feature memory is enabled but not provided
        """
        if parameters.enable_features_memory and features_memory is None:
            raise ConfigError("enable_features_memory is set but no feature memory was given")

        self._device_id = device_id
        self._parameters = parameters
        self._features_memory = features_memory
        self._world_frame_id = world_frame_id

        self._detector = FeatureDetector(
            n_features=parameters.orb_max_points,
            scale_factor=parameters.orb_scale_factor,
            n_levels=parameters.orb_levels_number,
        )
        self._matcher = DescriptorMatcher()
        self._resolver = MatchConsistencyResolver(
            matching_threshold=parameters.matching_threshold,
            merge_distance=parameters.keypoint_merge_distance,
        )
        self._depth_repairer = DepthRepairer(search_radius=parameters.depth_search_radius)
        self._reconstructor = PointReconstructor(depth_scale=parameters.depth_scale)
        self._solver = PoseSolver(
            reprojection_threshold=parameters.pnp_reprojection_error,
            ransac_confidence=parameters.pnp_confidence,
            max_iterations=parameters.pnp_iterations,
            refine_with_all_inliers=parameters.pnp_refine_with_inliers,
        )
        self._gate = ValidationGate.from_parameters(parameters, reference_to_world)

        self._state = EstimatorState()

    def process_features(
        self,
        source: Features,
        source_intrinsics: CameraIntrinsics | np.ndarray,
        reference_image: np.ndarray,
        depth_map: np.ndarray,
        reference_intrinsics: CameraIntrinsics | np.ndarray,
        timestamp_ns: int,
    ) -> RegistrationResult:
        """Run a full cycle from device features and live reference images.

        Args:
            source: Keypoints and ORB descriptors computed on the device
            source_intrinsics: Device camera intrinsics
            reference_image: Reference camera image (grayscale or BGR uint8)
            depth_map: Reference depth image aligned with ``reference_image``,
                0 = invalid. Repaired in place.
            reference_intrinsics: Reference camera intrinsics
            timestamp_ns: Timestamp of the device observation

        Returns:
            RegistrationResult, never raises for bad input
        """
        timing = RegistrationTiming()
        t_start = time.perf_counter()
        self._log_parameters()

        try:
            source_intrinsics = _as_intrinsics(source_intrinsics)
            reference_intrinsics = _as_intrinsics(reference_intrinsics)
            _check_source_features(source)
            gray = to_grayscale(reference_image)
            check_depth_map(depth_map)
            if gray.shape != depth_map.shape:
                raise InputError(
                    f"Reference image {gray.shape} and depth map {depth_map.shape} differ in size"
                )

            t0 = time.perf_counter()
            reference = self._detector.detect(gray)
            timing.detection_ms = (time.perf_counter() - t0) * 1000
            if len(reference) == 0:
                logger.error("No keypoints found in the reference image")
                return self._finish(RegistrationResult(RegistrationStatus.NO_FEATURES), timing, t_start)
            if reference.descriptors is None:
                logger.error("No descriptors computed for the reference image")
                return self._finish(RegistrationResult(RegistrationStatus.NO_DESCRIPTORS), timing, t_start)

            if self._parameters.enable_features_memory:
                self._features_memory.retain_foreground(depth_map)
                remembered = self._features_memory.list_features()
                logger.debug("Got %d features from memory", len(remembered))
                reference = reference.concatenate(memory_to_features(remembered))

            if source.descriptors.shape[1] != reference.descriptors.shape[1]:
                raise InputError(
                    f"Device descriptors have {source.descriptors.shape[1]} columns, "
                    f"reference descriptors have {reference.descriptors.shape[1]}"
                )

            t0 = time.perf_counter()
            matches = self._matcher.match(source, reference)
            timing.matching_ms = (time.perf_counter() - t0) * 1000
            logger.debug("Got %d raw matches", len(matches))

            result = self._register(
                matches,
                source,
                reference,
                depth_map,
                source_intrinsics,
                reference_intrinsics,
                timestamp_ns,
                timing,
            )
        except InputError as e:
            logger.error("Invalid input, dropping frame: %s", e)
            result = RegistrationResult(RegistrationStatus.INVALID_INPUT, message=str(e))

        return self._finish(result, timing, t_start)

    def process_matches(
        self,
        matches: Matches,
        source: Features,
        reference: Features,
        depth_map: np.ndarray,
        source_intrinsics: CameraIntrinsics | np.ndarray,
        reference_intrinsics: CameraIntrinsics | np.ndarray,
        timestamp_ns: int,
    ) -> RegistrationResult:
        """Run the registration chain on precomputed matches.

        Args:
            matches: Raw matches, source indices into ``source`` and
                reference indices into ``reference``
            source: Device features (descriptors optional)
            reference: Reference features, memory features included
                (descriptors required only to update the feature memory)
            depth_map: Reference depth image, 0 = invalid. Repaired in place.
            source_intrinsics: Device camera intrinsics
            reference_intrinsics: Reference camera intrinsics
            timestamp_ns: Timestamp of the device observation

        Returns:
            RegistrationResult, never raises for bad input
        """
        timing = RegistrationTiming()
        t_start = time.perf_counter()

        try:
            source_intrinsics = _as_intrinsics(source_intrinsics)
            reference_intrinsics = _as_intrinsics(reference_intrinsics)
            check_depth_map(depth_map)
            if not matches.check_indices(len(source), len(reference)):
                raise InputError("Match indices out of range of the keypoint sets")

            result = self._register(
                matches,
                source,
                reference,
                depth_map,
                source_intrinsics,
                reference_intrinsics,
                timestamp_ns,
                timing,
            )
        except InputError as e:
            logger.error("Invalid input, dropping frame: %s", e)
            result = RegistrationResult(RegistrationStatus.INVALID_INPUT, message=str(e))

        return self._finish(result, timing, t_start)

    def _register(
        self,
        matches: Matches,
        source: Features,
        reference: Features,
        depth_map: np.ndarray,
        source_intrinsics: CameraIntrinsics,
        reference_intrinsics: CameraIntrinsics,
        timestamp_ns: int,
        timing: RegistrationTiming,
    ) -> RegistrationResult:
        """Resolve, repair, reconstruct, solve and gate one set of matches."""
        result = RegistrationResult(
            RegistrationStatus.INSUFFICIENT_CORRESPONDENCES,
            num_raw_matches=len(matches),
        )

        t0 = time.perf_counter()
        resolved = self._resolver.resolve(matches, source, reference)
        timing.resolve_ms = (time.perf_counter() - t0) * 1000
        result.num_resolved_matches = len(resolved)

        t0 = time.perf_counter()
        repaired = self._depth_repairer.repair(resolved, reference, depth_map)
        timing.depth_repair_ms = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        points = self._reconstructor.reconstruct(
            repaired, source, reference, depth_map, reference_intrinsics
        )
        timing.reconstruction_ms = (time.perf_counter() - t0) * 1000
        result.num_correspondences = len(points)
        logger.info("Got %d usable correspondences", len(points))

        status = self._gate.check_correspondences(len(points))
        if status is not None:
            result.status = status
            return result

        t0 = time.perf_counter()
        pnp_result = self._solver.solve(
            points.points_3d,
            points.source_pixels,
            source_intrinsics,
            initial_pose=self._state.last_reference_pose,
        )
        timing.pnp_ms = (time.perf_counter() - t0) * 1000
        result.num_inliers = pnp_result.num_inliers
        result.reprojection_error = pnp_result.reprojection_error

        decision = self._gate.evaluate(len(points), pnp_result)
        result.status = decision.status
        if not decision.accepted:
            return result

        estimate = PoseEstimate.from_se3(
            decision.world_pose,
            frame_id=self._world_frame_id,
            timestamp_ns=timestamp_ns,
            num_inliers=pnp_result.num_inliers,
            reprojection_error=pnp_result.reprojection_error,
        )
        result.estimate = estimate

        self._state.accept(
            estimate,
            reference_pose=pnp_result.pose,
            match_count=len(points),
            reprojection_error=pnp_result.reprojection_error,
        )
        if self._parameters.enable_features_memory:
            self._save_inliers_to_memory(pnp_result, points, reference, depth_map)

        logger.info(
            "Device %s accepted: position=%s inliers=%d reprojection error=%.3f",
            self._device_id,
            np.array2string(estimate.position, precision=3),
            pnp_result.num_inliers,
            pnp_result.reprojection_error,
        )
        return result

    def _save_inliers_to_memory(
        self,
        pnp_result: PnPResult,
        points: ReconstructedPoints,
        reference: Features,
        depth_map: np.ndarray,
    ) -> None:
        """Append the reference features behind the inliers to the memory."""
        if reference.descriptors is None:
            logger.debug("Reference features carry no descriptors, nothing saved to memory")
            return

        device_position = pnp_result.pose.position
        for i in pnp_result.inlier_indices:
            reference_idx = int(points.matches.reference_indices[i])
            keypoint = reference.keypoints[reference_idx]
            point_3d = points.points_3d[i]
            direction = point_3d - device_position
            x, y = (int(v) for v in np.rint(keypoint.pt))

            self._features_memory.append(
                MemoryFeature(
                    keypoint=keypoint,
                    descriptor=reference.descriptors[reference_idx].copy(),
                    observer_distance=float(np.linalg.norm(direction)),
                    observer_direction=direction,
                    raw_depth=float(depth_map[y, x]),
                )
            )
        logger.debug("Saved %d inliers to memory", pnp_result.num_inliers)

    def _finish(
        self, result: RegistrationResult, timing: RegistrationTiming, t_start: float
    ) -> RegistrationResult:
        """Stamp timing on a result."""
        timing.total_ms = (time.perf_counter() - t_start) * 1000
        result.timing = timing
        return result

    def _log_parameters(self) -> None:
        """Log the parameters used for this cycle."""
        logger.debug("Estimator %s parameters: %s", self._device_id, self._parameters)

    @property
    def device_id(self) -> str:
        """Return the id of the tracked device."""
        return self._device_id

    @property
    def parameters(self) -> EstimatorParameters:
        """Return the estimator parameters."""
        return self._parameters

    @property
    def state(self) -> EstimatorState:
        """Return the estimator state (read it, don't modify it)."""
        return self._state

    @property
    def has_estimate(self) -> bool:
        """Return True once an estimate has been accepted."""
        return self._state.has_estimate

    @property
    def last_estimate(self) -> PoseEstimate | None:
        """Return the last accepted world-frame estimate."""
        return self._state.last_estimate
