"""Pytest configuration and shared fixtures for pcmatcher tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest


def random_rotation(rng):
    """Uniform random rotation matrix via QR decomposition."""
    q, r = np.linalg.qr(rng.normal(size=(3, 3)))
    q = q @ np.diag(np.sign(np.diag(r)))
    if np.linalg.det(q) < 0:
        q[:, 0] *= -1
    return q


def yaw_rotation(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.], [s, c, 0.], [0., 0., 1.]])


class CountingGenerator:
    """Wraps a numpy Generator and counts integers() calls."""

    def __init__(self, seed):
        self._rng = np.random.default_rng(seed)
        self.calls = 0

    def integers(self, *args, **kwargs):
        self.calls += 1
        return self._rng.integers(*args, **kwargs)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def cloud(rng):
    """100 well-spread points with distinct 33-dim descriptors."""
    points = rng.uniform(-10.0, 10.0, size=(100, 3))
    descriptors = rng.uniform(0.0, 100.0, size=(100, 33))
    return points, descriptors


@pytest.fixture
def rigid_pair(rng, cloud):
    """
    Target is a rotated, translated and shuffled copy of the source.

    Returns (source, target, source_desc, target_desc, permutation, R, t) where
    target[k] corresponds to source[permutation[k]].
    """
    points, descriptors = cloud
    R = random_rotation(rng)
    t = np.array([1.0, -2.0, 0.5])
    permutation = rng.permutation(points.shape[0])
    target = points[permutation] @ R.T + t
    return points, target, descriptors, descriptors[permutation], permutation, R, t
