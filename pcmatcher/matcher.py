"""Descriptor matching and geometric pruning of point correspondences."""

import math
import time
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from joblib import Parallel, delayed

from .config import MatchingConfig, MatchingMode
from .kdtree import DescriptorIndex
from .log import LoggerMixin
from .utils import as_points, make_rng, split_ranges

Correspondence = Tuple[int, int]

# Random triples drawn per candidate correspondence in the tuple test
TRIALS_PER_CORRESPONDENCE = 100

# Trials evaluated per vectorised block in the exhaustive tuple test
_TUPLE_BLOCK = 65536


@dataclass
class _CloudPair:
    """
    Both clouds in canonical order.

    ``first`` is always the cloud with more points and holds the search tree
    queried by every point of ``second``. ``swapped`` is True when ``first``
    is the caller's target, in which case pairs (first, second) must be
    mirrored before they are returned.
    """
    first_points: np.ndarray
    second_points: np.ndarray
    first_descriptors: np.ndarray
    second_descriptors: np.ndarray
    swapped: bool

    def unswap(self, correspondences):
        if not self.swapped:
            return list(correspondences)
        return [(j, i) for i, j in correspondences]


def _canonical_order(source_points, target_points, source_descriptors, target_descriptors):
    if target_points.shape[0] > source_points.shape[0]:
        return _CloudPair(target_points, source_points,
                          target_descriptors, source_descriptors, swapped=True)
    return _CloudPair(source_points, target_points,
                      source_descriptors, target_descriptors, swapped=False)


def within_scale(source_length, target_length, scale):
    """Strict edge-length agreement test: len_s * scale < len_t < len_s / scale."""
    return (source_length * scale < target_length) & (target_length < source_length / scale)


def _triangle_edges(points):
    """Edge lengths (0-1, 1-2, 2-0) of a block of triangles shaped (T, 3, 3)."""
    p0, p1, p2 = points[:, 0], points[:, 1], points[:, 2]
    return np.stack([
        np.linalg.norm(p0 - p1, axis=1),
        np.linalg.norm(p1 - p2, axis=1),
        np.linalg.norm(p2 - p0, axis=1),
    ], axis=1)


def cross_check(forward, reverse, n_first, n_second):
    """
    Keep the pairs recorded in both search directions.

    Args:
        forward: (i, j) pairs from first -> second searches
        reverse: (i, j) pairs from second -> first searches
        n_first: Number of points in the first cloud
        n_second: Number of points in the second cloud

    Returns:
        List of (i, j) such that j is a recorded neighbour of i and i is a
        recorded neighbour of j
    """
    first_neighbours = [[] for _ in range(n_first)]
    second_neighbours = [[] for _ in range(n_second)]
    for i, j in forward:
        first_neighbours[i].append(j)
    for i, j in reverse:
        second_neighbours[j].append(i)

    mutual = []
    for i in range(n_first):
        for j in first_neighbours[i]:
            for back in second_neighbours[j]:
                if back == i:
                    mutual.append((i, j))
    return mutual


def _mutual_matches(second_indices, best_first, reverse_cache, second_tree, first_descriptors):
    """
    Worker body of the optimized cross-check.

    ``reverse_cache`` is shared between workers and written without a lock.
    Every write for index i stores the nearest second-side neighbour of i,
    which is the same value whichever worker computes it, so a race costs at
    most a repeated query.
    """
    local = []
    for j in second_indices:
        i = int(best_first[j])
        if reverse_cache[i] == -1:
            reverse, _ = second_tree.query(first_descriptors[i], 1)
            reverse_cache[i] = reverse[0]
        if reverse_cache[i] == j:
            local.append((i, int(j)))
    return local


class CorrespondenceMatcher(LoggerMixin):
    """
    Builds point correspondences between two clouds from their descriptors.

    Two strategies are available through ``MatchingConfig.mode``:

    - ``exhaustive``: nearest neighbours in both directions, optional
      cross-check and tuple test; output sorted and duplicate free.
    - ``optimized``: batched search, distance threshold, parallel mutual
      check and a tuple test capped at ``max_correspondences``; output order
      is unspecified and not deduplicated.

    Working state is reset at the start of every ``establish`` call.
    """

    def __init__(self, config=None, rng=None):
        """
        Args:
            config: MatchingConfig (defaults used when None)
            rng: Optional numpy Generator; when None each call draws from a
                 fresh system-entropy generator
        """
        self.config = config or MatchingConfig()
        self.rng = rng
        self.reset()

    def reset(self):
        self.correspondences: List[Correspondence] = []
        self.num_initial_correspondences = 0
        self.num_pruned_correspondences = 0
        self.rejection_time = 0.0
        self.timings = {}
        self.global_scale = 1.0
        self.means = []

    def _make_index(self):
        return DescriptorIndex(leaf_size=self.config.leaf_size,
                               checks=self.config.checks,
                               n_jobs=self.config.n_jobs)

    def establish(self, source_points, target_points,
                  source_descriptors, target_descriptors) -> List[Correspondence]:
        """
        Match source against target.

        Args:
            source_points: (N, 3) source keypoints
            target_points: (M, 3) target keypoints
            source_descriptors: (N, D) descriptors row-aligned with source_points
            target_descriptors: (M, D) descriptors row-aligned with target_points

        Returns:
            List of (source_index, target_index)

        Raises:
            ValueError: if a descriptor set does not match its cloud
        """
        self.reset()
        source_points, source_descriptors = _validate_inputs(
            source_points, source_descriptors, "source")
        target_points, target_descriptors = _validate_inputs(
            target_points, target_descriptors, "target")

        if source_points.shape[0] == 0 or target_points.shape[0] == 0:
            self.logger.info("empty cloud, no correspondences",
                             source=source_points.shape[0], target=target_points.shape[0])
            return []

        if source_descriptors.shape[1] != target_descriptors.shape[1]:
            raise ValueError(
                f"Descriptor lengths differ: source {source_descriptors.shape[1]}, "
                f"target {target_descriptors.shape[1]}"
            )

        rng = make_rng(self.rng)
        if self.config.mode == MatchingMode.EXHAUSTIVE:
            source_points, target_points = self.normalize(source_points, target_points)
            pair = _canonical_order(source_points, target_points,
                                    source_descriptors, target_descriptors)
            correspondences = self._exhaustive_matching(pair, rng)
        else:
            pair = _canonical_order(source_points, target_points,
                                    source_descriptors, target_descriptors)
            correspondences = self._optimized_matching(pair, rng)

        self.correspondences = correspondences
        self.num_pruned_correspondences = len(correspondences)
        self.logger.info(
            "correspondences established",
            mode=self.config.mode.value,
            initial=self.num_initial_correspondences,
            pruned=self.num_pruned_correspondences,
        )
        return correspondences

    def normalize(self, source_points, target_points):
        """
        Recentre both clouds and divide them by one shared scale.

        The scale is 1.0 with ``use_absolute_scale``, otherwise the largest
        distance of any point from its own cloud's centroid over both clouds.
        A single scalar keeps the relative geometry of the two clouds intact.

        Returns:
            Tuple of normalized copies (source, target)
        """
        normalized = []
        self.means = []
        max_scale = 0.0
        for points in (source_points, target_points):
            mean = points.mean(axis=0)
            centered = points - mean
            self.means.append(mean)
            normalized.append(centered)
            max_scale = max(max_scale, float(np.max(np.linalg.norm(centered, axis=1))))

        if self.config.use_absolute_scale:
            self.global_scale = 1.0
        else:
            self.global_scale = max_scale

        if self.global_scale not in (0.0, 1.0):
            normalized = [points / self.global_scale for points in normalized]
        return normalized[0], normalized[1]

    def _exhaustive_matching(self, pair, rng):
        config = self.config
        n_first = pair.first_points.shape[0]
        n_second = pair.second_points.shape[0]

        first_tree = self._make_index().build(pair.first_descriptors)
        second_tree = self._make_index().build(pair.second_descriptors)

        # Lazily memoised nearest second-side neighbour of each first-side point
        first_to_second = np.full(n_first, -1, dtype=np.int64)
        reverse = []
        for j in range(n_second):
            nearest, _ = first_tree.query(pair.second_descriptors[j], 1)
            i = int(nearest[0])
            if first_to_second[i] == -1:
                back, _ = second_tree.query(pair.first_descriptors[i], 1)
                first_to_second[i] = back[0]
            reverse.append((i, j))

        forward = [(int(i), int(first_to_second[i]))
                   for i in np.flatnonzero(first_to_second != -1)]

        if config.use_crosscheck:
            correspondences = cross_check(forward, reverse, n_first, n_second)
        else:
            correspondences = forward + reverse
        self.num_initial_correspondences = len(correspondences)

        if config.use_tuple_test and config.tuple_scale != 0:
            start = time.perf_counter()
            correspondences = self._tuple_test(correspondences, pair, rng)
            self.rejection_time = time.perf_counter() - start

        return sorted(set(pair.unswap(correspondences)))

    def _tuple_test(self, correspondences, pair, rng):
        """
        Keep correspondences that take part in a geometrically consistent triple.

        Runs TRIALS_PER_CORRESPONDENCE * len(correspondences) trials; each
        accepted triple contributes its three correspondences, repeats included.
        """
        n_corr = len(correspondences)
        if n_corr == 0:
            return []

        scale = self.config.tuple_scale
        pairs = np.asarray(correspondences, dtype=np.int64)
        n_trials = TRIALS_PER_CORRESPONDENCE * n_corr

        accepted = []
        for offset in range(0, n_trials, _TUPLE_BLOCK):
            block = min(_TUPLE_BLOCK, n_trials - offset)
            picks = rng.integers(0, n_corr, size=(block, 3))

            first_edges = _triangle_edges(pair.first_points[pairs[picks, 0]])
            second_edges = _triangle_edges(pair.second_points[pairs[picks, 1]])
            consistent = np.all(within_scale(first_edges, second_edges, scale), axis=1)

            for triple in pairs[picks[consistent]]:
                accepted.extend((int(i), int(j)) for i, j in triple)

        self.logger.debug("tuple test", candidates=n_corr, trials=n_trials,
                          accepted=len(accepted))
        return accepted

    def _optimized_matching(self, pair, rng):
        config = self.config
        n_first = pair.first_points.shape[0]

        begin_build = time.perf_counter()
        first_tree = self._make_index().build(pair.first_descriptors)
        second_tree = self._make_index().build(pair.second_descriptors)
        end_build = time.perf_counter()

        k = 2 if config.use_ratio_test and n_first >= 2 else 1
        best_first, sq_dists = first_tree.query_batch(pair.second_descriptors, k)
        end_search = time.perf_counter()

        keep = sq_dists[:, 0] <= config.distance_threshold ** 2
        if k == 2:
            keep &= sq_dists[:, 0] < config.ratio ** 2 * sq_dists[:, 1]
        candidates = np.flatnonzero(keep)

        reverse_cache = np.full(n_first, -1, dtype=np.int64)
        chunks = split_ranges(candidates.shape[0], config.n_jobs)
        results = Parallel(n_jobs=config.n_jobs, prefer="threads")(
            delayed(_mutual_matches)(candidates[chunk], best_first[:, 0], reverse_cache,
                                     second_tree, pair.first_descriptors)
            for chunk in chunks
        )
        correspondences = [c for local in results for c in local]
        self.num_initial_correspondences = len(correspondences)
        end_corr = time.perf_counter()

        if config.use_tuple_test and config.tuple_scale != 0:
            correspondences = self._capped_tuple_test(correspondences, pair, rng)
        else:
            correspondences = pair.unswap(correspondences)
        end_tuple = time.perf_counter()

        self.rejection_time = end_tuple - end_corr
        self.timings = {
            "build": end_build - begin_build,
            "search": end_search - end_build,
            "crosscheck": end_corr - end_search,
            "tuple": end_tuple - end_corr,
        }
        self.logger.debug("optimized matching", candidates=int(candidates.shape[0]),
                          **{f"{name}_seconds": round(t, 6) for name, t in self.timings.items()})
        return correspondences

    def _capped_tuple_test(self, correspondences, pair, rng):
        """
        Tuple test that adds each candidate at most once and stops at the cap.

        Edge 0-1 is checked before the third candidate is drawn. Returned pairs
        are already in (source, target) order.
        """
        n_corr = len(correspondences)
        if n_corr == 0:
            return []

        scale = self.config.tuple_scale
        cap = self.config.max_correspondences
        first = pair.first_points[[i for i, _ in correspondences]].tolist()
        second = pair.second_points[[j for _, j in correspondences]].tolist()
        consumed = [False] * n_corr
        output = []

        def add(index):
            if consumed[index] or len(output) >= cap:
                return
            i, j = correspondences[index]
            output.append((j, i) if pair.swapped else (i, j))
            consumed[index] = True

        for _ in range(TRIALS_PER_CORRESPONDENCE * n_corr):
            rand0 = int(rng.integers(n_corr))
            rand1 = int(rng.integers(n_corr))
            if not within_scale(math.dist(first[rand0], first[rand1]),
                                math.dist(second[rand0], second[rand1]), scale):
                continue

            rand2 = int(rng.integers(n_corr))
            if (within_scale(math.dist(first[rand1], first[rand2]),
                             math.dist(second[rand1], second[rand2]), scale)
                    and within_scale(math.dist(first[rand2], first[rand0]),
                                     math.dist(second[rand2], second[rand0]), scale)):
                add(rand0)
                add(rand1)
                add(rand2)

            if len(output) >= cap:
                break

        return output


def _validate_inputs(points, descriptors, name):
    points = as_points(points)
    descriptors = np.asarray(descriptors, dtype=np.float64)
    if descriptors.size == 0:
        descriptors = descriptors.reshape(0, descriptors.shape[-1] if descriptors.ndim == 2 else 0)
    if descriptors.ndim != 2:
        raise ValueError(f"{name} descriptors must be 2D, got shape {descriptors.shape}")
    if descriptors.shape[0] != points.shape[0]:
        raise ValueError(
            f"{name}: {descriptors.shape[0]} descriptors for {points.shape[0]} points"
        )
    return points, descriptors
