"""Visualization utilities for registration diagnostics."""

import matplotlib.pyplot as plt
import numpy as np


def plot_timings(timings, score=None, save_path=None, show=False):
    """
    Bar chart of per-stage timings.

    Args:
        timings: Mapping of stage name -> seconds (e.g. GlobalRegistration.timings)
        score: Optional RegistrationScore shown in the title
        save_path: Optional path to save the plot
        show: Whether to open an interactive window

    Returns:
        The matplotlib Figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    names = list(timings.keys())
    seconds = [timings[name] for name in names]
    x_pos = np.arange(len(names))
    ax.bar(x_pos, seconds, color='#2E86AB', alpha=0.8)

    for i, value in enumerate(seconds):
        ax.text(i, value, f'{value:.3f}s', ha='center', va='bottom', fontsize=9)

    ax.set_xticks(x_pos)
    ax.set_xticklabels(names)
    ax.set_ylabel('Seconds', fontsize=12)

    title = 'Registration Stage Timings'
    if score is not None:
        title += (f"\npairs: {score.initial_pairs} initial, {score.pruned_pairs} pruned | "
                  f"inliers: {score.rot_inliers} rot, {score.trans_inliers} trans")
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3, axis='y')

    plt.tight_layout()
    if save_path is not None:
        fig.savefig(save_path, dpi=150)
    if show:
        plt.show()
    return fig


def plot_correspondences(source_points, target_points, correspondences,
                         offset=None, save_path=None, show=False):
    """
    3D scatter of both clouds with a line per correspondence.

    Args:
        source_points: (N, 3) source keypoints (red)
        target_points: (M, 3) target keypoints (blue)
        correspondences: Iterable of (source_index, target_index)
        offset: Optional (3,) shift applied to the target so the clouds separate
        save_path: Optional path to save the plot
        show: Whether to open an interactive window

    Returns:
        The matplotlib Figure
    """
    source_points = np.asarray(source_points, dtype=float).reshape(-1, 3)
    target_points = np.asarray(target_points, dtype=float).reshape(-1, 3)
    if offset is not None:
        target_points = target_points + np.asarray(offset, dtype=float)

    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection='3d')

    ax.scatter(*source_points.T, s=2, c='red', label='Source')
    ax.scatter(*target_points.T, s=2, c='blue', label='Target')

    pairs = list(correspondences)
    for i, j in pairs:
        segment = np.vstack([source_points[i], target_points[j]])
        ax.plot(*segment.T, color='green', linewidth=0.5, alpha=0.6)

    ax.set_title(f'{len(pairs)} correspondences', fontsize=14, fontweight='bold')
    ax.legend(loc='best')

    plt.tight_layout()
    if save_path is not None:
        fig.savefig(save_path, dpi=150)
    if show:
        plt.show()
    return fig
