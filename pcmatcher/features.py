"""FPFH keypoint and descriptor extraction."""

import numpy as np
import open3d as o3d

from .transforms import compute_normals
from .utils import as_points, time_function

FPFH_DIMENSION = 33


class FPFHExtractor:
    """
    Computes 33-bin Fast Point Feature Histograms with open3d.

    Points whose histogram is all zeros (no neighbours inside ``fpfh_radius``)
    carry no geometric information and are dropped, so the returned keypoints
    are a subset of the input, in input order.
    """

    def __init__(self, normal_radius, fpfh_radius, max_nn_normal=30, max_nn_fpfh=100):
        self.normal_radius = normal_radius
        self.fpfh_radius = fpfh_radius
        self.max_nn_normal = max_nn_normal
        self.max_nn_fpfh = max_nn_fpfh

    @time_function
    def extract(self, points):
        """
        Args:
            points: (N, 3) array

        Returns:
            Tuple of (keypoints (M, 3), descriptors (M, 33)) with M <= N
        """
        points = as_points(points)
        if points.shape[0] == 0:
            return np.zeros((0, 3)), np.zeros((0, FPFH_DIMENSION))

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(points)
        pcd.normals = o3d.utility.Vector3dVector(
            compute_normals(points, self.normal_radius, max_nn=self.max_nn_normal)
        )

        fpfh = o3d.pipelines.registration.compute_fpfh_feature(
            pcd,
            o3d.geometry.KDTreeSearchParamHybrid(radius=self.fpfh_radius, max_nn=self.max_nn_fpfh)
        )
        # open3d stores features column-wise (33, N)
        descriptors = np.asarray(fpfh.data).T

        keep = np.any(descriptors != 0, axis=1) & np.all(np.isfinite(descriptors), axis=1)
        return points[keep], descriptors[keep]
