"""Tests for FPFH extraction."""

import numpy as np
import pytest

from pcmatcher.features import FPFH_DIMENSION, FPFHExtractor


@pytest.fixture
def surface():
    """A gently curved 20 x 20 grid with 0.1 spacing."""
    xs, ys = np.meshgrid(np.arange(20) * 0.1, np.arange(20) * 0.1)
    zs = 0.05 * np.sin(3.0 * xs) * np.cos(2.0 * ys)
    return np.column_stack([xs.ravel(), ys.ravel(), zs.ravel()])


@pytest.mark.slow
class TestFPFHExtractor:

    def test_descriptor_shape(self, surface):
        keypoints, descriptors = FPFHExtractor(0.3, 0.5).extract(surface)

        assert descriptors.shape[1] == FPFH_DIMENSION
        assert keypoints.shape[0] == descriptors.shape[0]
        assert 0 < keypoints.shape[0] <= surface.shape[0]
        assert np.all(np.isfinite(descriptors))

    def test_keypoints_are_input_points_in_order(self, surface):
        keypoints, _ = FPFHExtractor(0.3, 0.5).extract(surface)

        rows = [int(np.flatnonzero(np.all(surface == kp, axis=1))[0]) for kp in keypoints]
        assert rows == sorted(rows)

    def test_isolated_point_dropped(self, surface):
        points = np.vstack([surface, [[100.0, 100.0, 100.0]]])

        keypoints, descriptors = FPFHExtractor(0.3, 0.5).extract(points)

        assert not np.any(np.all(keypoints == [100.0, 100.0, 100.0], axis=1))
        assert np.all(np.any(descriptors != 0, axis=1))

    def test_empty_input(self):
        keypoints, descriptors = FPFHExtractor(0.3, 0.5).extract(np.zeros((0, 3)))
        assert keypoints.shape == (0, 3)
        assert descriptors.shape == (0, FPFH_DIMENSION)
