"""Tests for diagnostic plots."""

import matplotlib.pyplot as plt
import numpy as np

from pcmatcher.registration import RegistrationScore
from pcmatcher.visualization import plot_correspondences, plot_timings


def test_plot_timings_saves_figure(tmp_path):
    timings = {"processing": 0.01, "extraction": 0.2, "rejection": 0.05,
               "matching": 0.1, "solver": 0.02}
    path = tmp_path / "timings.png"

    fig = plot_timings(timings, score=RegistrationScore(10, 8, 7, 6), save_path=path)

    assert path.exists()
    assert len(fig.axes[0].patches) == len(timings)
    assert "10 initial" in fig.axes[0].get_title()
    plt.close(fig)


def test_plot_correspondences_draws_one_line_per_pair(rng, tmp_path):
    source = rng.random((20, 3))
    target = rng.random((15, 3))
    pairs = [(0, 1), (4, 2), (19, 14)]
    path = tmp_path / "pairs.png"

    fig = plot_correspondences(source, target, pairs, offset=[2.0, 0.0, 0.0], save_path=path)

    assert path.exists()
    assert len(fig.axes[0].lines) == len(pairs)
    plt.close(fig)


def test_plot_correspondences_without_pairs(rng):
    fig = plot_correspondences(rng.random((5, 3)), rng.random((5, 3)), [])
    assert len(fig.axes[0].lines) == 0
    assert fig.axes[0].get_title() == "0 correspondences"
    plt.close(fig)
