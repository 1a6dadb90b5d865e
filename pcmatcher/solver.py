"""Outlier-robust rigid pose solver over matched point pairs."""

from dataclasses import dataclass, field
from typing import List

import numpy as np

from .config import RotationEstimation
from .log import LoggerMixin
from .losses import gnc_tls_weights, initial_gnc_mu
from .transforms import compute_transformation, compute_yaw_transformation, to_homogeneous
from .utils import as_points


@dataclass
class RegistrationSolution:
    """Pose estimate. The default instance is the identity / invalid result."""
    valid: bool = False
    scale: float = 1.0
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation_inliers: List[int] = field(default_factory=list)
    translation_inliers: List[int] = field(default_factory=list)

    @property
    def transformation(self) -> np.ndarray:
        return to_homogeneous(self.rotation, self.translation, self.scale)


class RobustRegistrationSolver(LoggerMixin):
    """
    Graduated non-convexity over a truncated least squares cost.

    Each GNC iteration refits the pose with weighted SVD and recomputes the
    weights with a tighter surrogate, so gross mismatches are progressively
    switched off. With ``RotationEstimation.QUATRO`` the rotation is restricted
    to yaw, which is more stable for ground robots whose roll and pitch stay
    small between scans.
    """

    def __init__(self, noise_bound, rotation_estimation=RotationEstimation.GNC_TLS,
                 max_iterations=100, gnc_factor=1.4, cost_threshold=1e-6):
        if noise_bound <= 0:
            raise ValueError(f"noise_bound must be positive, got {noise_bound}")
        self.noise_bound = float(noise_bound)
        self.rotation_estimation = RotationEstimation(rotation_estimation)
        self.max_iterations = max_iterations
        self.gnc_factor = gnc_factor
        self.cost_threshold = cost_threshold
        self.reset()

    def reset(self):
        self._solution = RegistrationSolution()

    def get_solution(self) -> RegistrationSolution:
        return self._solution

    @property
    def rotation_inliers(self) -> List[int]:
        return self._solution.rotation_inliers

    @property
    def translation_inliers(self) -> List[int]:
        return self._solution.translation_inliers

    @property
    def min_inliers(self) -> int:
        # A yaw-only rotation is fixed by 2 pairs, a full rotation needs 3
        return 2 if self.rotation_estimation == RotationEstimation.QUATRO else 3

    def solve(self, source_points, target_points) -> RegistrationSolution:
        """
        Estimate the rigid transform mapping source_points onto target_points.

        Args:
            source_points: (N, 3) matched source points
            target_points: (N, 3) matched target points, row-aligned with source

        Returns:
            The new solution (also available via get_solution())
        """
        src = as_points(source_points)
        tgt = as_points(target_points)
        if src.shape != tgt.shape:
            raise ValueError(
                f"Matched point sets differ in shape: {src.shape} vs {tgt.shape}"
            )

        self.reset()
        if src.shape[0] < 2:
            return self._solution

        if self.rotation_estimation == RotationEstimation.QUATRO:
            fit = compute_yaw_transformation
        else:
            fit = compute_transformation

        noise_bound_sq = self.noise_bound ** 2
        weights = np.ones(src.shape[0])

        try:
            R, t = fit(src, tgt, weights)
            residuals_sq = _residuals_sq(src, tgt, R, t)
            mu = initial_gnc_mu(residuals_sq, noise_bound_sq)

            iterations = 0
            prev_cost = np.inf
            while mu is not None and iterations < self.max_iterations:
                weights = gnc_tls_weights(residuals_sq, noise_bound_sq, mu)
                R, t = fit(src, tgt, weights)
                residuals_sq = _residuals_sq(src, tgt, R, t)

                cost = float(np.sum(weights * residuals_sq))
                iterations += 1
                if abs(cost - prev_cost) < self.cost_threshold:
                    break
                prev_cost = cost
                mu *= self.gnc_factor
        except np.linalg.LinAlgError as e:
            self.logger.warning("pose solve failed", error=str(e), pairs=src.shape[0])
            return self._solution

        rotation_inliers = np.flatnonzero(weights >= 0.5)
        within_bound = residuals_sq[rotation_inliers] <= noise_bound_sq
        translation_inliers = rotation_inliers[within_bound]

        solution = RegistrationSolution(
            rotation_inliers=rotation_inliers.tolist(),
            translation_inliers=translation_inliers.tolist(),
        )
        if translation_inliers.shape[0] >= self.min_inliers:
            solution.valid = True
            solution.rotation = R
            solution.translation = t

        self.logger.debug(
            "pose solved",
            algorithm=self.rotation_estimation.value,
            pairs=src.shape[0],
            rotation_inliers=len(solution.rotation_inliers),
            translation_inliers=len(solution.translation_inliers),
            valid=solution.valid,
        )
        self._solution = solution
        return solution


def _residuals_sq(src, tgt, R, t):
    return np.sum((src @ R.T + t - tgt) ** 2, axis=1)
