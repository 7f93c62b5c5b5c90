"""SE(3) pose representation and the PnP pose inversion."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
from scipy.spatial.transform import Rotation


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    An ``SE3`` named ``T_a_b`` maps points expressed in frame ``b`` into
    frame ``a``:

        p_a = R @ p_b + t

    When it describes a camera pose, ``b`` is the camera frame and the
    translation is the camera position in frame ``a``.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create the identity transformation."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix [[R, t], [0, 1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from an OpenCV Rodrigues vector and translation.

        The result is expressed exactly as OpenCV reports it: for the
        output of ``cv2.solvePnP`` that is the object-to-camera transform.
        Use :func:`camera_pose_from_pnp` to obtain the camera pose.
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def from_quaternion(
        cls,
        qw: float,
        qx: float,
        qy: float,
        qz: float,
        translation: np.ndarray,
    ) -> SE3:
        """Create SE3 from a Hamilton (w, x, y, z) quaternion and translation.

        The quaternion is normalized before conversion.
        """
        rotation = Rotation.from_quat([qx, qy, qz, qw]).as_matrix()
        return cls(rotation=rotation, translation=np.asarray(translation).flatten())

    def to_matrix(self) -> np.ndarray:
        """Convert to a 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    def to_quaternion(self) -> np.ndarray:
        """Return the rotation as a unit quaternion (w, x, y, z)."""
        qx, qy, qz, qw = Rotation.from_matrix(self.rotation).as_quat()
        return np.array([qw, qx, qy, qz], dtype=np.float64)

    def inverse(self) -> SE3:
        """Compute the inverse transformation.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_world_reference.compose(T_reference_device) gives T_world_device
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map Nx3 points from the local frame into the parent frame."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    @property
    def position(self) -> np.ndarray:
        """Return the frame origin expressed in the parent frame."""
        return self.translation.copy()

    @property
    def z_axis(self) -> np.ndarray:
        """Return the local Z axis expressed in the parent frame.

        For a camera pose this is the optical axis.
        """
        return self.rotation[:, 2].copy()

    def is_finite(self) -> bool:
        """Return True if rotation and translation hold only finite values."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.position
        return f"SE3(position=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Composition operator: T_a_c = T_a_b @ T_b_c."""
        return self.compose(other)


def camera_pose_from_pnp(rvec: np.ndarray, tvec: np.ndarray) -> SE3:
    """Turn a PnP solution into the pose of the camera in the object frame.

    ``cv2.solvePnP`` and ``cv2.solvePnPRansac`` return ``T_camera_object``:
    the transform mapping object points into the camera frame. Callers
    want the camera pose in the object frame, ``T_object_camera``, which is
    its inverse (R^T, -R^T @ t).

    Args:
        rvec: Rodrigues rotation vector reported by OpenCV
        tvec: Translation vector reported by OpenCV

    Returns:
        Camera pose in the frame the 3D points were expressed in
    """
    return SE3.from_rvec_tvec(rvec, tvec).inverse()


def pnp_seed_from_camera_pose(camera_pose: SE3) -> tuple[np.ndarray, np.ndarray]:
    """Convert a camera pose back into an OpenCV (rvec, tvec) initial guess.

    This is the inverse of :func:`camera_pose_from_pnp`.

    Returns:
        Tuple of (rvec, tvec), each shaped (3, 1) as OpenCV expects
    """
    rvec, tvec = camera_pose.inverse().to_rvec_tvec()
    return rvec.reshape(3, 1), tvec.reshape(3, 1)


def angle_from_z_axis(pose: SE3) -> float:
    """Return the angle in degrees between the pose's Z axis and the parent Z axis."""
    z = np.array([0.0, 0.0, 1.0])
    cos_angle = float(np.clip(np.dot(pose.z_axis, z), -1.0, 1.0))
    return float(np.degrees(np.arccos(cos_angle)))
