"""KD-Tree over descriptor vectors for k-nearest-neighbour search."""

import heapq
import itertools

import numpy as np
from joblib import Parallel, delayed

from .utils import split_ranges, time_function


class Node:
    def __init__(self):
        self.axis = None
        self.split = None
        self.left = None
        self.right = None
        self.indices = None

    def set_axis(self, axis):
        self.axis = axis

    def set_split(self, split):
        self.split = split

    def set_left(self, left):
        self.left = left

    def set_right(self, right):
        self.right = right

    def set_indices(self, indices):
        self.indices = indices


class DescriptorIndex:
    """
    KD-Tree over fixed-length descriptors (e.g. 33-bin FPFH histograms).

    Leaves hold up to ``leaf_size`` descriptor indices. Internal nodes split on
    the dimension with the largest spread at its median value.

    ``checks`` bounds how many descriptors a query examines once it holds k
    candidates; None searches exhaustively (exact results).
    """

    def __init__(self, leaf_size=15, checks=None, n_jobs=1):
        self.root = None
        self.descriptors = None
        self.leaf_size = max(1, int(leaf_size))
        self.checks = checks
        self.n_jobs = n_jobs

    def __len__(self):
        return 0 if self.descriptors is None else self.descriptors.shape[0]

    @property
    def dimension(self):
        return None if self.descriptors is None else self.descriptors.shape[1]

    @time_function
    def build(self, descriptors):
        """
        Build the tree.

        Args:
            descriptors: (N, D) array, N >= 1

        Returns:
            self, so the call can be chained
        """
        descriptors = np.ascontiguousarray(descriptors, dtype=np.float64)
        if descriptors.ndim != 2:
            raise ValueError(f"Descriptors must be a 2D array, got shape {descriptors.shape}")
        if descriptors.shape[0] == 0:
            raise ValueError("Cannot build an index over an empty descriptor set")

        self.descriptors = descriptors
        indices = np.arange(descriptors.shape[0], dtype=np.int64)
        self.root = self._build_node(indices)
        return self

    def _build_node(self, indices):
        n_points = indices.shape[0]

        # Leaf: store the indices to avoid creating a node per descriptor
        if n_points <= self.leaf_size:
            leaf = Node()
            leaf.set_indices(indices)
            return leaf

        subset = self.descriptors[indices]
        spread = subset.max(axis=0) - subset.min(axis=0)
        axis = int(np.argmax(spread))

        # All remaining descriptors identical
        if spread[axis] == 0:
            leaf = Node()
            leaf.set_indices(indices)
            return leaf

        median_index = n_points // 2
        order = np.argpartition(subset[:, axis], median_index)
        indices = indices[order]

        node = Node()
        node.set_axis(axis)
        node.set_split(self.descriptors[indices[median_index], axis])
        node.set_left(self._build_node(indices[:median_index]))
        node.set_right(self._build_node(indices[median_index:]))
        return node

    def query(self, descriptor, k=1):
        """
        Find the k nearest descriptors.

        Args:
            descriptor: (D,) query vector
            k: Number of neighbours; clamped to the index size

        Returns:
            Tuple of (indices, squared_distances), ascending by distance with
            ties broken by index
        """
        if self.root is None:
            raise ValueError("Index has not been built")
        query = np.asarray(descriptor, dtype=np.float64).reshape(-1)
        if query.shape[0] != self.dimension:
            raise ValueError(
                f"Query has {query.shape[0]} elements, index holds {self.dimension}"
            )
        k = max(1, min(int(k), len(self)))

        # Max-heap of the current best k as (-distance, -index)
        best = []
        # Min-heap of branches to visit as (lower_bound, tiebreak, node)
        counter = itertools.count()
        branches = [(0.0, next(counter), self.root)]
        examined = 0

        while branches:
            bound, _, node = heapq.heappop(branches)
            if len(best) == k and bound > -best[0][0]:
                break
            if self.checks is not None and len(best) == k and examined >= self.checks:
                break

            # Descend to a leaf, queueing the far side of each split
            while node.indices is None:
                diff = query[node.axis] - node.split
                if diff < 0:
                    near_node, far_node = node.left, node.right
                else:
                    near_node, far_node = node.right, node.left
                far_bound = max(bound, diff * diff)
                heapq.heappush(branches, (far_bound, next(counter), far_node))
                node = near_node

            leaf_points = self.descriptors[node.indices]
            dists = np.sum((leaf_points - query) ** 2, axis=1)
            examined += dists.shape[0]
            for idx, dist in zip(node.indices, dists):
                item = (-float(dist), -int(idx))
                if len(best) < k:
                    heapq.heappush(best, item)
                elif item > best[0]:
                    heapq.heapreplace(best, item)

        ordered = sorted((-d, -i) for d, i in best)
        indices = np.array([i for _, i in ordered], dtype=np.int64)
        sq_dists = np.array([d for d, _ in ordered], dtype=np.float64)
        return indices, sq_dists

    def query_batch(self, descriptors, k=1):
        """
        Query many descriptors at once, fanned out over joblib threads.

        Returns:
            Tuple of (indices (M, k), squared_distances (M, k)); row m equals
            ``query(descriptors[m], k)``
        """
        descriptors = np.asarray(descriptors, dtype=np.float64)
        k = max(1, min(int(k), len(self)))
        if descriptors.shape[0] == 0:
            return np.zeros((0, k), dtype=np.int64), np.zeros((0, k))

        chunks = split_ranges(descriptors.shape[0], self.n_jobs)
        results = Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(self._query_chunk)(descriptors[chunk], k)
            for chunk in chunks
        )
        indices = np.concatenate([r[0] for r in results], axis=0)
        sq_dists = np.concatenate([r[1] for r in results], axis=0)
        return indices, sq_dists

    def _query_chunk(self, descriptors, k):
        indices = np.empty((descriptors.shape[0], k), dtype=np.int64)
        sq_dists = np.empty((descriptors.shape[0], k), dtype=np.float64)
        for row, descriptor in enumerate(descriptors):
            indices[row], sq_dists[row] = self.query(descriptor, k)
        return indices, sq_dists
