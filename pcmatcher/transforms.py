"""Rigid transformation utilities for point cloud registration."""

import numpy as np
import open3d as o3d


def compute_normals(points, radius, max_nn=30):
    """
    Estimate per-point normals from a hybrid radius / kNN neighbourhood.

    Normals are oriented toward the origin (the sensor for a LiDAR scan).
    """
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)
    pcd.estimate_normals(
        search_param=o3d.geometry.KDTreeSearchParamHybrid(radius=radius, max_nn=max_nn)
    )
    pcd.orient_normals_towards_camera_location(camera_location=np.array([0., 0., 0.]))

    return np.asarray(pcd.normals)


def _weighted_centroids(source_points, target_points, weights):
    if weights is None:
        weights = np.ones(source_points.shape[0])
    total = np.sum(weights)
    if total <= 0:
        raise np.linalg.LinAlgError("All correspondence weights are zero")
    weights = weights / total

    source_centroid = np.sum(source_points * weights[:, np.newaxis], axis=0)
    target_centroid = np.sum(target_points * weights[:, np.newaxis], axis=0)
    return weights, source_centroid, target_centroid


def compute_transformation(source_points, target_points, weights=None):
    """
    Weighted least-squares rigid fit (Kabsch / Umeyama without scale).

    Returns:
        Tuple of (R (3, 3), t (3,)) minimising sum w_i |R s_i + t - d_i|^2
    """
    weights, source_centroid, target_centroid = _weighted_centroids(
        source_points, target_points, weights
    )

    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Weighted covariance matrix
    H = (source_centered * weights[:, np.newaxis]).T @ target_centered
    U, S, Vt = np.linalg.svd(H)

    R = Vt.T @ U.T

    # Handle reflection case
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid
    return R, t


def compute_yaw_transformation(source_points, target_points, weights=None):
    """
    Weighted rigid fit with rotation restricted to the z axis.

    Suited to ground vehicles, where pitch and roll between scans are small.

    Returns:
        Tuple of (R (3, 3), t (3,))
    """
    weights, source_centroid, target_centroid = _weighted_centroids(
        source_points, target_points, weights
    )

    s = (source_points - source_centroid)[:, :2]
    d = (target_points - target_centroid)[:, :2]

    # Closed-form 2D Procrustes angle
    sin_sum = np.sum(weights * (s[:, 0] * d[:, 1] - s[:, 1] * d[:, 0]))
    cos_sum = np.sum(weights * (s[:, 0] * d[:, 0] + s[:, 1] * d[:, 1]))
    yaw = np.arctan2(sin_sum, cos_sum)

    c, si = np.cos(yaw), np.sin(yaw)
    R = np.array([
        [c, -si, 0.],
        [si, c, 0.],
        [0., 0., 1.]
    ])
    t = target_centroid - R @ source_centroid
    return R, t


def to_homogeneous(rotation, translation, scale=1.0):
    """Build a 4x4 homogeneous transformation matrix."""
    transformation = np.eye(4)
    transformation[:3, :3] = scale * rotation
    transformation[:3, 3] = translation
    return transformation


def apply_transformation(points, transformation):

    R = transformation[:3, :3]
    t = transformation[:3, 3]
    return points @ R.T + t
