"""Point cloud data management and voxel downsampling."""

import numpy as np
import open3d as o3d

from .utils import as_points


def voxel_sample(points, voxel_size):
    """
    Downsample points using a voxel grid.

    Every occupied voxel is replaced by the centroid of the points inside it.
    Output order follows the first appearance of each voxel in the input.

    Args:
        points: (N, 3) array
        voxel_size: Edge length of the cubic voxels

    Returns:
        (M, 3) array with M <= N
    """
    points = as_points(points)
    if points.shape[0] == 0:
        return points
    if voxel_size <= 0:
        raise ValueError(f"voxel_size must be positive, got {voxel_size}")

    min_bound = np.min(points, axis=0)
    voxel_indices = np.floor((points - min_bound) / voxel_size).astype(np.int64)

    _, first, inverse, counts = np.unique(
        voxel_indices, axis=0, return_index=True, return_inverse=True, return_counts=True
    )
    inverse = inverse.reshape(-1)
    sums = np.zeros((counts.shape[0], 3))
    np.add.at(sums, inverse, points)
    centroids = sums / counts[:, np.newaxis]

    return centroids[np.argsort(first, kind="stable")]


class PointCloud:
    """Thin wrapper over an (N, 3) array with open3d interop."""

    def __init__(self, points):
        """
        Args:
            points: (N, 3) array-like or an open3d PointCloud
        """
        self.points = as_points(points)

    @classmethod
    def from_file(cls, filepath):
        """Load point cloud from any format open3d can read (.ply, .pcd, ...)."""
        pcd = o3d.io.read_point_cloud(str(filepath))
        return cls(pcd)

    def downsample(self, voxel_size):
        """Return a new PointCloud sampled on a voxel grid."""
        return PointCloud(voxel_sample(self.points, voxel_size))

    def to_o3d(self, color=None):
        """
        Convert to Open3D PointCloud object.

        Args:
            color: Optional uniform color [r, g, b]
        """
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if color is not None:
            pcd.paint_uniform_color(color)
        return pcd

    def __len__(self):
        return len(self.points)
