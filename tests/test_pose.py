"""Tests for SE3 and the PnP pose inversion."""

import cv2
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from camreg.pose import SE3, angle_from_z_axis, camera_pose_from_pnp, pnp_seed_from_camera_pose


def _random_pose(seed: int) -> SE3:
    rng = np.random.default_rng(seed)
    return SE3(
        rotation=Rotation.from_rotvec(rng.uniform(-1.5, 1.5, size=3)).as_matrix(),
        translation=rng.uniform(-2.0, 2.0, size=3),
    )


class TestSE3:
    """Test suite for SE3."""

    def test_rejects_bad_shapes(self):
        """Test that malformed rotations and translations are rejected."""
        with pytest.raises(ValueError, match="Rotation must be 3x3"):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError, match="Translation must be"):
            SE3(rotation=np.eye(3), translation=np.zeros(4))

    def test_inverse_composes_to_identity(self):
        """Test that T @ T^-1 is the identity."""
        pose = _random_pose(1)
        result = pose @ pose.inverse()

        np.testing.assert_allclose(result.rotation, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(result.translation, np.zeros(3), atol=1e-12)

    def test_inverse_formula(self):
        """Test that the inverse is (R^T, -R^T t)."""
        pose = _random_pose(2)
        inverse = pose.inverse()

        np.testing.assert_allclose(inverse.rotation, pose.rotation.T)
        np.testing.assert_allclose(inverse.translation, -pose.rotation.T @ pose.translation)

    def test_compose_matches_matrix_product(self):
        """Test that composition equals the 4x4 matrix product."""
        a, b = _random_pose(3), _random_pose(4)

        np.testing.assert_allclose((a @ b).to_matrix(), a.to_matrix() @ b.to_matrix(), atol=1e-12)

    def test_from_matrix_round_trip(self):
        """Test conversion to and from a homogeneous matrix."""
        pose = _random_pose(5)
        restored = SE3.from_matrix(pose.to_matrix())

        np.testing.assert_allclose(restored.rotation, pose.rotation)
        np.testing.assert_allclose(restored.translation, pose.translation)

    def test_quaternion_round_trip(self):
        """Test conversion to and from a (w, x, y, z) quaternion."""
        pose = _random_pose(6)
        qw, qx, qy, qz = pose.to_quaternion()
        restored = SE3.from_quaternion(qw, qx, qy, qz, pose.translation)

        np.testing.assert_allclose(restored.rotation, pose.rotation, atol=1e-12)
        assert np.isclose(np.linalg.norm([qw, qx, qy, qz]), 1.0)

    def test_identity_quaternion_is_scalar_first(self):
        """Test that the identity rotation maps to (1, 0, 0, 0)."""
        np.testing.assert_allclose(SE3.identity().to_quaternion(), [1.0, 0.0, 0.0, 0.0])

    def test_transform_points(self):
        """Test that points are rotated then translated."""
        pose = SE3(
            rotation=Rotation.from_euler("z", 90, degrees=True).as_matrix(),
            translation=np.array([1.0, 0.0, 0.0]),
        )
        result = pose.transform_points(np.array([[1.0, 0.0, 0.0]]))

        np.testing.assert_allclose(result, [[1.0, 1.0, 0.0]], atol=1e-12)

    def test_is_finite(self):
        """Test detection of non-finite poses."""
        assert SE3.identity().is_finite()
        assert not SE3(rotation=np.eye(3), translation=[np.nan, 0.0, 0.0]).is_finite()


class TestPnPInversion:
    """Test suite for the conversion between PnP output and camera poses."""

    def test_camera_pose_from_pnp_inverts_opencv_pose(self):
        """Test that the result is the inverse of the object-to-camera transform."""
        camera_pose = _random_pose(7)
        rvec, tvec = camera_pose.inverse().to_rvec_tvec()

        result = camera_pose_from_pnp(rvec, tvec)

        np.testing.assert_allclose(result.rotation, camera_pose.rotation, atol=1e-9)
        np.testing.assert_allclose(result.translation, camera_pose.translation, atol=1e-9)

    def test_camera_pose_from_pnp_on_solvepnp_output(self):
        """Test the inversion on a real solvePnP solution.

        The recovered pose must place the camera where the image was taken.
        """
        K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
        camera_pose = SE3(
            rotation=Rotation.from_euler("xyz", [3.0, -4.0, 2.0], degrees=True).as_matrix(),
            translation=np.array([0.3, -0.2, 0.1]),
        )
        rng = np.random.default_rng(0)
        points = rng.uniform([-1.0, -1.0, 2.0], [1.0, 1.0, 4.0], size=(12, 3))
        in_camera = camera_pose.inverse().transform_points(points)
        pixels = (K @ in_camera.T).T
        pixels = pixels[:, :2] / pixels[:, 2:3]

        ok, rvec, tvec = cv2.solvePnP(points, pixels, K, None, flags=cv2.SOLVEPNP_ITERATIVE)
        assert ok

        result = camera_pose_from_pnp(rvec, tvec)
        np.testing.assert_allclose(result.position, camera_pose.position, atol=1e-6)
        np.testing.assert_allclose(result.rotation, camera_pose.rotation, atol=1e-6)

    def test_seed_round_trip(self):
        """Test that the seed conversion is the inverse of camera_pose_from_pnp."""
        camera_pose = _random_pose(8)
        rvec, tvec = pnp_seed_from_camera_pose(camera_pose)

        assert rvec.shape == (3, 1)
        assert tvec.shape == (3, 1)
        restored = camera_pose_from_pnp(rvec, tvec)
        np.testing.assert_allclose(restored.to_matrix(), camera_pose.to_matrix(), atol=1e-9)


class TestAngleFromZAxis:
    """Test suite for angle_from_z_axis."""

    def test_identity_is_zero(self):
        """Test that an unrotated pose has zero deviation."""
        assert angle_from_z_axis(SE3.identity()) == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.parametrize("axis", ["x", "y"])
    def test_tilt_angle(self, axis: str):
        """Test that a tilt about a horizontal axis is reported in degrees."""
        pose = SE3(
            rotation=Rotation.from_euler(axis, 30.0, degrees=True).as_matrix(),
            translation=np.zeros(3),
        )
        assert angle_from_z_axis(pose) == pytest.approx(30.0, abs=1e-6)

    def test_rotation_about_z_is_ignored(self):
        """Test that spinning about the Z axis does not change the angle."""
        pose = SE3(
            rotation=Rotation.from_euler("z", 120.0, degrees=True).as_matrix(),
            translation=np.zeros(3),
        )
        assert angle_from_z_axis(pose) == pytest.approx(0.0, abs=1e-6)
