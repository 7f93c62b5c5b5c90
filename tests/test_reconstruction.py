"""Tests for back-projection of reference keypoints."""

import numpy as np
import pytest

from camreg import CameraIntrinsics
from camreg.depth import PointReconstructor
from camreg.errors import InputError
from camreg.features import Features, Matches

from conftest import DEPTHS_MM, REFERENCE_INTRINSICS, REFERENCE_PIXELS


class TestCameraIntrinsics:
    """Test suite for CameraIntrinsics."""

    def test_backproject_then_project(self):
        """Test that projecting a back-projected pixel returns the pixel."""
        pixels = np.array([[10.0, 20.0], [320.0, 240.0], [600.5, 450.25]])
        points = REFERENCE_INTRINSICS.backproject(pixels, [1.0, 2.5, 4.0])

        np.testing.assert_allclose(REFERENCE_INTRINSICS.project(points), pixels)
        np.testing.assert_allclose(points[:, 2], [1.0, 2.5, 4.0])

    def test_matrix_round_trip(self):
        """Test conversion to and from a 3x3 camera matrix."""
        K = REFERENCE_INTRINSICS.to_matrix()

        assert CameraIntrinsics.from_matrix(K) == REFERENCE_INTRINSICS

    @pytest.mark.parametrize("fx", [0.0, -1.0, float("nan")])
    def test_rejects_bad_focal_length(self, fx: float):
        """Test that unusable focal lengths are rejected."""
        with pytest.raises(InputError):
            CameraIntrinsics(fx=fx, fy=500.0, cx=320.0, cy=240.0)


class TestPointReconstructor:
    """Test suite for PointReconstructor."""

    def test_pinhole_back_projection(self, scene):
        """Test that 3D points follow the pinhole model in meters."""
        reconstructor = PointReconstructor(depth_scale=1000.0)

        points = reconstructor.reconstruct(
            scene.matches, scene.source, scene.reference, scene.depth_map, scene.reference_intrinsics
        )

        assert len(points) == len(scene.matches)
        np.testing.assert_allclose(points.points_3d[:, 2], DEPTHS_MM / 1000.0)
        expected_x = (REFERENCE_PIXELS[:, 0] - 320.0) * DEPTHS_MM / 1000.0 / 525.0
        np.testing.assert_allclose(points.points_3d[:, 0], expected_x)
        np.testing.assert_allclose(points.points_3d, scene.points_3d)

    def test_arrays_are_aligned(self, scene):
        """Test that points, pixels and matches have the same length and order."""
        order = np.array([4, 0, 7, 2])
        matches = scene.matches.select(order)
        reconstructor = PointReconstructor(depth_scale=1000.0)

        points = reconstructor.reconstruct(
            matches, scene.source, scene.reference, scene.depth_map, scene.reference_intrinsics
        )

        assert len(points.points_3d) == len(points.source_pixels) == len(points.matches) == 4
        np.testing.assert_allclose(points.source_pixels, scene.source.points[order], rtol=1e-6)
        np.testing.assert_allclose(points.points_3d, scene.points_3d[order])

    def test_subpixel_position_with_rounded_depth(self):
        """Test that depth comes from the rounded pixel while X, Y use the sub-pixel position."""
        depth_map = np.zeros((10, 10), dtype=np.uint16)
        depth_map[5, 4] = 2000
        reference = Features.from_arrays(np.array([[4.25, 5.25]]), None)
        source = Features.from_arrays(np.array([[1.0, 1.0]]), None)
        intrinsics = CameraIntrinsics(fx=100.0, fy=100.0, cx=0.0, cy=0.0)
        matches = Matches(source_indices=[0], reference_indices=[0], distances=[0.0])

        points = PointReconstructor(depth_scale=1000.0).reconstruct(
            matches, source, reference, depth_map, intrinsics
        )

        np.testing.assert_allclose(points.points_3d, [[0.085, 0.105, 2.0]])

    def test_empty(self, scene):
        """Test that no matches give no points."""
        points = PointReconstructor(depth_scale=1000.0).reconstruct(
            Matches.empty(), scene.source, scene.reference, scene.depth_map, scene.reference_intrinsics
        )

        assert len(points) == 0
        assert points.points_3d.shape == (0, 3)
        assert points.source_pixels.shape == (0, 2)
