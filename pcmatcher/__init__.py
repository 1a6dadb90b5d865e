"""
PCMatcher - Correspondence-based global registration of 3D point clouds

A point cloud registration library featuring:
- Custom KD-Tree over FPFH descriptors with batched kNN queries
- Exhaustive and parallel correspondence matching with cross-check
- Randomized triangle-consistency (tuple) pruning
- Outlier-robust pose estimation (GNC-TLS / yaw-only QUATRO)
"""

from .config import MatchingConfig, MatchingMode, RegistrationConfig, RotationEstimation
from .features import FPFHExtractor
from .kdtree import DescriptorIndex
from .matcher import CorrespondenceMatcher
from .point_cloud import PointCloud, voxel_sample
from .registration import GlobalRegistration, RegistrationScore
from .solver import RegistrationSolution, RobustRegistrationSolver
from .visualization import plot_correspondences, plot_timings

__version__ = "1.0.0"
__all__ = ["CorrespondenceMatcher", "DescriptorIndex", "FPFHExtractor", "GlobalRegistration",
           "MatchingConfig", "MatchingMode", "PointCloud", "RegistrationConfig",
           "RegistrationScore", "RegistrationSolution", "RobustRegistrationSolver",
           "RotationEstimation", "plot_correspondences", "plot_timings", "voxel_sample"]
