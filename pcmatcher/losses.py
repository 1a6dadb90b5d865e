"""Robust weight functions for outlier handling in pose estimation."""

import numpy as np


def truncated_least_squares_weights(residuals, noise_bound):
    """
    Binary TLS weights: 1 inside the noise bound, 0 outside.

    Args:
        residuals: Array of correspondence residuals (distances)
        noise_bound: Largest residual still considered an inlier

    Returns:
        Array of weights (0 or 1)
    """
    return (np.asarray(residuals) <= noise_bound).astype(float)


def gnc_tls_weights(residuals_sq, noise_bound_sq, mu):
    """
    Graduated non-convexity weights for the truncated least squares cost.

    For small ``mu`` the surrogate is close to convex and weights are soft;
    as ``mu`` grows they converge to the binary TLS weights.

    Args:
        residuals_sq: Array of squared residuals
        noise_bound_sq: Squared noise bound
        mu: Current control parameter (> 0)

    Returns:
        Array of weights in [0, 1]
    """
    residuals_sq = np.asarray(residuals_sq, dtype=np.float64)
    upper = (mu + 1) / mu * noise_bound_sq
    lower = mu / (mu + 1) * noise_bound_sq

    weights = np.zeros_like(residuals_sq)
    weights[residuals_sq <= lower] = 1.0

    between = (residuals_sq > lower) & (residuals_sq < upper)
    weights[between] = (
        np.sqrt(noise_bound_sq * mu * (mu + 1) / residuals_sq[between]) - mu
    )
    return np.clip(weights, 0.0, 1.0)


def initial_gnc_mu(residuals_sq, noise_bound_sq):
    """
    Starting control parameter so that every residual gets a non-zero weight.

    Returns None when all residuals already lie within the noise bound.
    """
    max_residual_sq = float(np.max(residuals_sq))
    if 2 * max_residual_sq <= noise_bound_sq:
        return None
    return noise_bound_sq / (2 * max_residual_sq - noise_bound_sq)
