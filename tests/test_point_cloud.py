"""Tests for voxel sampling and the PointCloud wrapper."""

import numpy as np
import open3d as o3d
import pytest

from pcmatcher.point_cloud import PointCloud, voxel_sample


class TestVoxelSample:

    def test_centroid_per_voxel(self):
        points = np.array([
            [0.05, 0.05, 0.0],
            [0.15, 0.05, 0.0],
            [1.05, 0.00, 0.0],
            [0.10, 0.10, 0.0],
        ])

        sampled = voxel_sample(points, 0.5)

        assert sampled.shape == (2, 3)
        np.testing.assert_allclose(sampled[0], points[[0, 1, 3]].mean(axis=0))
        np.testing.assert_allclose(sampled[1], points[2])

    def test_order_follows_first_appearance(self):
        points = np.array([
            [5.0, 5.0, 5.0],
            [0.0, 0.0, 0.0],
            [5.1, 5.1, 5.1],
        ])

        sampled = voxel_sample(points, 1.0)

        np.testing.assert_allclose(sampled[0], [5.05, 5.05, 5.05])
        np.testing.assert_allclose(sampled[1], [0.0, 0.0, 0.0])

    def test_small_voxel_keeps_every_point(self, rng):
        points = rng.uniform(-10, 10, size=(50, 3))
        sampled = voxel_sample(points, 1e-6)
        assert sampled.shape == points.shape
        np.testing.assert_allclose(np.sort(sampled, axis=0), np.sort(points, axis=0))

    def test_never_grows(self, rng):
        points = rng.uniform(-1, 1, size=(500, 3))
        assert voxel_sample(points, 0.3).shape[0] <= 500

    def test_empty_input(self):
        assert voxel_sample(np.zeros((0, 3)), 0.5).shape == (0, 3)

    @pytest.mark.parametrize("voxel_size", [0.0, -1.0])
    def test_invalid_voxel_size(self, voxel_size):
        with pytest.raises(ValueError):
            voxel_sample(np.ones((3, 3)), voxel_size)

    def test_bad_shape(self):
        with pytest.raises(ValueError):
            voxel_sample(np.ones((4, 2)), 0.5)


class TestPointCloud:

    def test_wraps_array(self, rng):
        points = rng.random((10, 3))
        cloud = PointCloud(points)
        assert len(cloud) == 10
        np.testing.assert_array_equal(cloud.points, points)

    def test_downsample_returns_point_cloud(self, rng):
        cloud = PointCloud(rng.uniform(0, 1, size=(200, 3)))
        sampled = cloud.downsample(0.5)
        assert isinstance(sampled, PointCloud)
        assert len(sampled) <= 8

    def test_open3d_round_trip(self, rng):
        points = rng.random((25, 3))
        pcd = PointCloud(points).to_o3d(color=[1.0, 0.0, 0.0])

        assert isinstance(pcd, o3d.geometry.PointCloud)
        np.testing.assert_allclose(np.asarray(pcd.colors), np.tile([1.0, 0.0, 0.0], (25, 1)))
        np.testing.assert_allclose(PointCloud(pcd).points, points)

    def test_from_file(self, rng, tmp_path):
        points = rng.random((30, 3))
        path = tmp_path / "cloud.ply"
        o3d.io.write_point_cloud(str(path), PointCloud(points).to_o3d())

        loaded = PointCloud.from_file(path)

        np.testing.assert_allclose(loaded.points, points, atol=1e-6)
