"""Device pose estimation using PnP with RANSAC."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..camera import CameraIntrinsics
from ..pose import SE3, camera_pose_from_pnp, pnp_seed_from_camera_pose

logger = logging.getLogger(__name__)

MIN_PNP_POINTS = 4


@dataclass
class PnPResult:
    """Result of PnP pose estimation.

    Attributes:
        success: True if the solver converged to a finite pose
        pose: Device camera pose in the reference camera frame,
            T_reference_device. None if failed.
        inliers: Boolean mask indicating which correspondences are inliers
        num_inliers: Number of inlier correspondences
        reprojection_error: Mean reprojection error of inliers (pixels)
    """

    success: bool
    pose: SE3 | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int
    reprojection_error: float

    @classmethod
    def failure(cls, n_points: int, num_inliers: int = 0) -> PnPResult:
        """Create a failed result for ``n_points`` correspondences."""
        return cls(
            success=False,
            pose=None,
            inliers=np.zeros(n_points, dtype=bool),
            num_inliers=num_inliers,
            reprojection_error=float("inf"),
        )

    @property
    def inlier_indices(self) -> np.ndarray:
        """Return indices of the inlier correspondences."""
        return np.flatnonzero(self.inliers)


class PoseSolver:
    """Estimates the device pose from reference 3D points and device pixels.

    The 3D points are expressed in the reference camera frame, so the PnP
    solution locates the device camera relative to the reference camera.
    RANSAC provides robustness to wrong matches. A previous estimate can
    seed the solver; the result is always re-verified by RANSAC.
    """

    def __init__(
        self,
        reprojection_threshold: float,
        ransac_confidence: float,
        max_iterations: int,
        refine_with_all_inliers: bool,
    ) -> None:
        """Initialize pose solver.

        Args:
            reprojection_threshold: RANSAC inlier threshold in pixels.
            ransac_confidence: Desired probability of finding a good model.
            max_iterations: Maximum RANSAC iterations.
            refine_with_all_inliers: If True, refine the pose using all
                inliers after RANSAC.
        """
        self._reprojection_threshold = reprojection_threshold
        self._ransac_confidence = ransac_confidence
        self._max_iterations = max_iterations
        self._refine = refine_with_all_inliers

    def solve(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        intrinsics: CameraIntrinsics,
        initial_pose: SE3 | None = None,
    ) -> PnPResult:
        """Estimate the device pose from 3D-2D correspondences.

        Args:
            points_3d: Nx3 array of 3D points in the reference camera frame
            points_2d: Nx2 array of corresponding device pixel coordinates
            intrinsics: Device camera intrinsics
            initial_pose: Optional previous device pose T_reference_device,
                used as the RANSAC initial guess

        Returns:
            PnPResult whose pose is T_reference_device. An inlier count
            lower than required downstream is not treated as a failure.
        """
        n_points = len(points_3d)
        if n_points < MIN_PNP_POINTS or len(points_2d) != n_points:
            return PnPResult.failure(n_points)

        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 1, 3)
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 1, 2)
        camera_matrix = intrinsics.to_matrix()

        # No distortion: device keypoints are reported undistorted
        dist_coeffs = None

        use_extrinsic_guess = False
        rvec_init = None
        tvec_init = None
        if initial_pose is not None and initial_pose.is_finite():
            rvec_init, tvec_init = pnp_seed_from_camera_pose(initial_pose)
            use_extrinsic_guess = True

        logger.debug(
            "Running solvePnPRansac on %d points: iterations=%d threshold=%.2f confidence=%.3f seeded=%s",
            n_points,
            self._max_iterations,
            self._reprojection_threshold,
            self._ransac_confidence,
            use_extrinsic_guess,
        )

        try:
            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                objectPoints=points_3d,
                imagePoints=points_2d,
                cameraMatrix=camera_matrix,
                distCoeffs=dist_coeffs,
                rvec=rvec_init,
                tvec=tvec_init,
                useExtrinsicGuess=use_extrinsic_guess,
                iterationsCount=self._max_iterations,
                reprojectionError=self._reprojection_threshold,
                confidence=self._ransac_confidence,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            logger.debug("solvePnPRansac raised: %s", e)
            return PnPResult.failure(n_points)

        if not success or inliers is None or len(inliers) == 0:
            return PnPResult.failure(n_points)

        inlier_mask = np.zeros(n_points, dtype=bool)
        inlier_mask[inliers.flatten()] = True
        num_inliers = int(np.sum(inlier_mask))

        if self._refine and num_inliers >= MIN_PNP_POINTS:
            try:
                success_refine, rvec_refined, tvec_refined = cv2.solvePnP(
                    objectPoints=points_3d[inlier_mask],
                    imagePoints=points_2d[inlier_mask],
                    cameraMatrix=camera_matrix,
                    distCoeffs=dist_coeffs,
                    rvec=rvec.copy(),
                    tvec=tvec.copy(),
                    useExtrinsicGuess=True,
                    flags=cv2.SOLVEPNP_ITERATIVE,
                )
                if success_refine and np.isfinite(rvec_refined).all() and np.isfinite(tvec_refined).all():
                    rvec, tvec = rvec_refined, tvec_refined
            except cv2.error as e:
                # Keep the RANSAC pose
                logger.debug("Inlier refinement failed: %s", e)

        if not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
            return PnPResult.failure(n_points, num_inliers)

        reproj_error = compute_reprojection_error(
            points_3d[inlier_mask].reshape(-1, 3),
            points_2d[inlier_mask].reshape(-1, 2),
            rvec,
            tvec,
            camera_matrix,
        )

        return PnPResult(
            success=True,
            pose=camera_pose_from_pnp(rvec, tvec),
            inliers=inlier_mask,
            num_inliers=num_inliers,
            reprojection_error=reproj_error,
        )

    @property
    def reprojection_threshold(self) -> float:
        """Return RANSAC inlier threshold."""
        return self._reprojection_threshold


def compute_reprojection_error(
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
    camera_matrix: np.ndarray,
) -> float:
    """Compute the mean reprojection error.

    Args:
        points_3d: Nx3 3D points in the object (reference) frame
        points_2d: Nx2 observed 2D points
        rvec: Rotation vector of T_camera_object
        tvec: Translation vector of T_camera_object
        camera_matrix: 3x3 intrinsic matrix

    Returns:
        Mean pixel distance between observed and projected points, 0 for
        no points
    """
    if len(points_3d) == 0:
        return 0.0

    projected, _ = cv2.projectPoints(
        np.asarray(points_3d, dtype=np.float64).reshape(-1, 1, 3),
        rvec,
        tvec,
        camera_matrix,
        None,
    )
    projected = projected.reshape(-1, 2)

    errors = np.linalg.norm(projected - np.asarray(points_2d).reshape(-1, 2), axis=1)
    return float(np.mean(errors))
