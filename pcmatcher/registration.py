"""Global registration pipeline: sample, extract, match, solve."""

import time
from dataclasses import asdict, dataclass

import numpy as np

from .config import RegistrationConfig
from .features import FPFHExtractor
from .log import LoggerMixin
from .matcher import CorrespondenceMatcher
from .point_cloud import voxel_sample
from .solver import RegistrationSolution, RobustRegistrationSolver
from .utils import as_points


@dataclass
class RegistrationScore:
    initial_pairs: int = 0
    pruned_pairs: int = 0
    rot_inliers: int = 0
    trans_inliers: int = 0


class GlobalRegistration(LoggerMixin):
    """
    Correspondence-based registration of two point clouds.

    The voxel sampler, feature extractor and pose solver are injectable; by
    default they are ``voxel_sample``, ``FPFHExtractor`` and
    ``RobustRegistrationSolver`` configured from ``RegistrationConfig``.
    """

    def __init__(self, config=None, extractor=None, sampler=None, solver=None, rng=None):
        """
        Args:
            config: RegistrationConfig (defaults used when None)
            extractor: Object with ``extract(points) -> (keypoints, descriptors)``
            sampler: Callable ``sample(points, voxel_size) -> points``
            solver: Object with ``reset()``, ``solve(src, tgt)`` and ``get_solution()``
            rng: Optional numpy Generator forwarded to the matcher
        """
        self.config = config or RegistrationConfig()
        self._extractor = extractor
        self._sampler = sampler
        self._solver = solver
        self.rng = rng
        self.reset()

    def configure(self, **changes):
        """
        Update configuration fields and rebuild matcher, extractor and solver.

        Values derived from voxel_size (noise bound, radii) are re-derived
        unless they were set explicitly.
        """
        values = {**self.config.model_dump(exclude_unset=True), **changes}
        self.config = RegistrationConfig(**values)
        self.reset()
        return self

    def reset(self):
        config = self.config
        self.matcher = CorrespondenceMatcher(config.matching_config(), rng=self.rng)
        self.extractor = self._extractor or FPFHExtractor(config.normal_radius, config.fpfh_radius)
        self.sampler = self._sampler or voxel_sample
        self.reset_solver()
        self._clear()

    def reset_solver(self):
        if self._solver is not None:
            self.solver = self._solver
            self.solver.reset()
        else:
            self.solver = RobustRegistrationSolver(
                self.config.noise_bound, self.config.rotation_estimation
            )

    def _clear(self):
        self.source_keypoints = np.zeros((0, 3))
        self.target_keypoints = np.zeros((0, 3))
        self.correspondences = []
        self.processing_time = 0.0
        self.extraction_time = 0.0
        self.matching_time = 0.0
        self.solver_time = 0.0

    def match(self, source, target):
        """
        Find matched point pairs between two clouds.

        Args:
            source: (N, 3) array, PointCloud or open3d cloud
            target: (M, 3) array, PointCloud or open3d cloud

        Returns:
            Tuple of (source_matched (K, 3), target_matched (K, 3)), row-aligned
        """
        self._clear()
        self.matcher.reset()

        t_init = time.perf_counter()
        source_points = as_points(source)
        target_points = as_points(target)
        if self.config.use_voxel_sampling:
            source_points = as_points(self.sampler(source_points, self.config.voxel_size))
            target_points = as_points(self.sampler(target_points, self.config.voxel_size))
        t_process = time.perf_counter()

        # The extractor may drop points, so keypoints can be fewer than inputs
        self.source_keypoints, source_descriptors = self.extractor.extract(source_points)
        self.target_keypoints, target_descriptors = self.extractor.extract(target_points)
        self.source_keypoints = as_points(self.source_keypoints)
        self.target_keypoints = as_points(self.target_keypoints)
        t_mid = time.perf_counter()

        if len(self.source_keypoints) == 0 or len(self.target_keypoints) == 0:
            self.logger.warning("no keypoints to match",
                                source=len(self.source_keypoints),
                                target=len(self.target_keypoints))
            correspondences = []
        else:
            correspondences = self.matcher.establish(
                self.source_keypoints, self.target_keypoints,
                source_descriptors, target_descriptors,
            )
        self.correspondences = correspondences

        source_matched, target_matched = self._gather(correspondences)
        t_end = time.perf_counter()

        self.processing_time = t_process - t_init
        self.extraction_time = t_mid - t_process
        self.matching_time = t_end - t_mid

        self.logger.info(
            "clouds matched",
            source_points=len(source_points),
            target_points=len(target_points),
            source_keypoints=len(self.source_keypoints),
            target_keypoints=len(self.target_keypoints),
            pairs=len(correspondences),
        )
        return source_matched, target_matched

    def _gather(self, correspondences):
        if not correspondences:
            return np.zeros((0, 3)), np.zeros((0, 3))
        pairs = np.asarray(correspondences, dtype=np.int64)
        return self.source_keypoints[pairs[:, 0]], self.target_keypoints[pairs[:, 1]]

    def estimate(self, source, target) -> RegistrationSolution:
        """
        Estimate the rigid transform taking source onto target.

        With fewer than 2 matched pairs the solver is not run and its current
        (identity, invalid) solution is returned.
        """
        context = self.log_start("pose estimation")
        self.reset_solver()
        source_matched, target_matched = self.match(source, target)

        if source_matched.shape[0] < 2:
            self.logger.warning("too few pairs to solve", pairs=source_matched.shape[0])
            return self.solver.get_solution()

        start = time.perf_counter()
        self.solver.solve(source_matched, target_matched)
        self.solver_time = time.perf_counter() - start

        solution = self.solver.get_solution()
        self.log_success(
            context,
            valid=solution.valid,
            rot_inliers=len(solution.rotation_inliers),
            trans_inliers=len(solution.translation_inliers),
            solver_seconds=round(self.solver_time, 6),
        )
        return solution

    def get_keypoints(self):
        """Keypoints kept by the extractor in the last call, (source, target)."""
        return self.source_keypoints, self.target_keypoints

    def get_initial_correspondences(self):
        """Index pairs produced by the matcher in the last call, before pose solving."""
        return list(self.correspondences)

    def get_keypoints_from_initial_matching(self):
        """Matched keypoint pairs of the last call as row-aligned (source, target) arrays."""
        return self._gather(self.correspondences)

    @property
    def rejection_time(self):
        return self.matcher.rejection_time

    @property
    def timings(self):
        return {
            "processing": self.processing_time,
            "extraction": self.extraction_time,
            "rejection": self.rejection_time,
            "matching": self.matching_time,
            "solver": self.solver_time,
        }

    @property
    def score(self) -> RegistrationScore:
        solution = self.solver.get_solution()
        return RegistrationScore(
            initial_pairs=self.matcher.num_initial_correspondences,
            pruned_pairs=self.matcher.num_pruned_correspondences,
            rot_inliers=len(solution.rotation_inliers),
            trans_inliers=len(solution.translation_inliers),
        )

    def summary(self):
        """Timing and correspondence summary of the last call, also logged."""
        timings = self.timings
        score = self.score
        # Rejection runs inside matching and is reported, not added
        total = sum(t for name, t in timings.items() if name != "rejection")
        lines = [
            "============== Time ==============",
            f"Voxelization: {timings['processing']:.6f} sec",
            f"Extraction  : {timings['extraction']:.6f} sec",
            f"Pruning     : {timings['rejection']:.6f} sec",
            f"Matching    : {timings['matching']:.6f} sec",
            f"Solving     : {timings['solver']:.6f} sec",
            "----------------------------------",
            f"Total       : {total:.6f} sec",
            "====== # of correspondences ======",
            f"# initial pairs : {score.initial_pairs}",
            f"# pruned pairs  : {score.pruned_pairs}",
            "----------------------------------",
            f"# rot inliers   : {score.rot_inliers}",
            f"# trans inliers : {score.trans_inliers}",
            "==================================",
        ]
        text = "\n".join(lines)
        self.logger.info("registration summary", total_seconds=round(total, 6),
                         **asdict(score))
        return text
