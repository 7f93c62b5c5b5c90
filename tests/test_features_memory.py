"""Tests for the feature memory."""

import cv2
import numpy as np
import pytest

from camreg.memory import FeaturesMemory, MemoryFeature, memory_to_features


def _feature(x: float, y: float, raw_depth: float, tag: int = 0) -> MemoryFeature:
    return MemoryFeature(
        keypoint=cv2.KeyPoint(float(x), float(y), 31.0),
        descriptor=np.full(32, tag, dtype=np.uint8),
        observer_distance=2.0,
        observer_direction=np.array([0.0, 0.0, 2.0]),
        raw_depth=raw_depth,
    )


class TestFeaturesMemory:
    """Test suite for FeaturesMemory."""

    def test_rejects_non_positive_capacity(self):
        """Test that the memory needs room for at least one feature."""
        with pytest.raises(ValueError, match="max_features"):
            FeaturesMemory(max_features=0, depth_tolerance=50.0)

    def test_append_and_list(self):
        """Test that features are listed oldest first."""
        memory = FeaturesMemory(max_features=10, depth_tolerance=50.0)
        memory.append(_feature(1, 1, 1000, tag=1))
        memory.append(_feature(2, 2, 1000, tag=2))

        listed = memory.list_features()

        assert len(memory) == 2
        assert [int(f.descriptor[0]) for f in listed] == [1, 2]

    def test_list_is_a_snapshot(self):
        """Test that later appends do not change an earlier listing."""
        memory = FeaturesMemory(max_features=10, depth_tolerance=50.0)
        memory.append(_feature(1, 1, 1000))
        listed = memory.list_features()

        memory.append(_feature(2, 2, 1000))

        assert len(listed) == 1

    def test_evicts_oldest_when_full(self):
        """Test FIFO eviction at capacity."""
        memory = FeaturesMemory(max_features=3, depth_tolerance=50.0)
        for tag in range(5):
            memory.append(_feature(tag, tag, 1000, tag=tag))

        assert [int(f.descriptor[0]) for f in memory.list_features()] == [2, 3, 4]

    def test_retain_foreground(self):
        """Test that only features now seeing a farther surface are forgotten."""
        depth_map = np.zeros((100, 100), dtype=np.uint16)
        depth_map[10, 10] = 1000  # same surface
        depth_map[20, 20] = 3000  # surface moved away
        depth_map[30, 30] = 500  # something moved in front
        memory = FeaturesMemory(max_features=10, depth_tolerance=50.0)
        memory.append(_feature(10, 10, 1000, tag=1))
        memory.append(_feature(20, 20, 1000, tag=2))
        memory.append(_feature(30, 30, 1000, tag=3))
        memory.append(_feature(40, 40, 1000, tag=4))  # invalid depth now
        memory.append(_feature(400, 40, 1000, tag=5))  # outside the map

        memory.retain_foreground(depth_map)

        assert [int(f.descriptor[0]) for f in memory.list_features()] == [1, 3, 4, 5]

    def test_retain_foreground_tolerance(self):
        """Test that a depth increase within the tolerance is kept."""
        depth_map = np.full((50, 50), 1050, dtype=np.uint16)
        memory = FeaturesMemory(max_features=10, depth_tolerance=50.0)
        memory.append(_feature(10, 10, 1000))

        memory.retain_foreground(depth_map)

        assert len(memory) == 1

    def test_capacity_survives_retain(self):
        """Test that filtering keeps the capacity bound."""
        memory = FeaturesMemory(max_features=2, depth_tolerance=50.0)
        memory.append(_feature(1, 1, 1000))
        memory.retain_foreground(np.zeros((10, 10), dtype=np.uint16))
        for tag in range(3):
            memory.append(_feature(2, 2, 1000, tag=tag))

        assert len(memory) == 2

    def test_memory_to_features(self):
        """Test packing memory into a Features block."""
        memory = FeaturesMemory(max_features=10, depth_tolerance=50.0)
        memory.append(_feature(5.5, 6.5, 1000, tag=7))
        memory.append(_feature(8.0, 9.0, 1000, tag=9))

        features = memory_to_features(memory.list_features())

        assert len(features) == 2
        np.testing.assert_allclose(features.points, [[5.5, 6.5], [8.0, 9.0]])
        assert features.descriptors.shape == (2, 32)
        assert features.descriptors.dtype == np.uint8
        np.testing.assert_array_equal(features.descriptors[:, 0], [7, 9])

    def test_empty_memory_to_features(self):
        """Test that an empty memory gives an empty Features block."""
        features = memory_to_features(())

        assert len(features) == 0
        assert features.descriptors is None
