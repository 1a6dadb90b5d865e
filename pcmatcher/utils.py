"""General utility functions."""

import time
from functools import wraps
from typing import Optional

import numpy as np
from joblib import cpu_count

from .log import get_logger

logger = get_logger(__name__)


def time_function(func):
    """
    Decorator to time function execution.
    Elapsed seconds are logged at debug level under the function name.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = time.perf_counter() - start_time
        logger.debug("timed", function=func.__qualname__, seconds=round(elapsed, 6))
        return result

    return wrapper


def make_rng(rng: Optional[np.random.Generator] = None) -> np.random.Generator:
    """
    Return the injected generator, or a fresh one seeded from system entropy.

    Args:
        rng: Optional pre-seeded generator (tests inject one for determinism)
    """
    if rng is not None:
        return rng
    return np.random.default_rng()


def as_points(cloud) -> np.ndarray:
    """
    Coerce a cloud (PointCloud, open3d cloud or array-like) to an (N, 3) float array.

    Raises:
        ValueError: if the input is not N x 3
    """
    points = getattr(cloud, "points", cloud)
    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return np.zeros((0, 3))
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected an (N, 3) point array, got shape {points.shape}")
    return points


def split_ranges(n_items, n_jobs):
    """
    Partition range(n_items) into contiguous, non-empty index ranges for n_jobs workers.

    Returns:
        List of int arrays; empty when n_items == 0
    """
    if n_items == 0:
        return []
    workers = cpu_count() if n_jobs < 0 else n_jobs
    n_chunks = max(1, min(n_items, workers * 4))
    return np.array_split(np.arange(n_items), n_chunks)
