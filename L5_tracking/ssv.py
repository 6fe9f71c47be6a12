# =============================================================================
# L5 Tracking - Swept Sphere Volume Fit
# =============================================================================
# Fits a tight sphere or capsule around a cluster using its principal axis.
# =============================================================================

import numpy as np

from .types import SSVShape, ShapeKind


def principal_axis(points: np.ndarray) -> np.ndarray:
    """Unit eigenvector of the largest covariance eigenvalue."""
    if len(points) < 2:
        return np.array([1.0, 0.0, 0.0])
    cov = np.cov(points, rowvar=False)
    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    return eigenvectors[:, np.argmax(eigenvalues)]


def point_segment_distances(points: np.ndarray, a: np.ndarray,
                            b: np.ndarray) -> np.ndarray:
    """Distances of points to the segment a-b."""
    ab = b - a
    length_sq = float(ab @ ab)
    if length_sq < 1e-12:
        return np.linalg.norm(points - a, axis=1)
    t = np.clip((points - a) @ ab / length_sq, 0.0, 1.0)
    closest = a + np.outer(t, ab)
    return np.linalg.norm(points - closest, axis=1)


def fit_sphere(points: np.ndarray) -> SSVShape:
    center = points.mean(axis=0)
    radius = float(np.max(np.linalg.norm(points - center, axis=1)))
    return SSVShape(kind=ShapeKind.SPHERE, radius=radius, point_a=center)


def fit_capsule(points: np.ndarray, tight: bool = True) -> SSVShape:
    """
    Capsule along the principal axis between the extreme projections.

    With `tight`, the end points are pulled in by the radius around the
    axis; the radius is then grown to cover every point.
    """
    center = points.mean(axis=0)
    axis = principal_axis(points)
    offsets = points - center
    proj = offsets @ axis
    lo, hi = float(proj.min()), float(proj.max())

    perpendicular = offsets - np.outer(proj, axis)
    radius = float(np.max(np.linalg.norm(perpendicular, axis=1)))

    if tight:
        lo, hi = lo + radius, hi - radius
        if lo > hi:
            lo = hi = (lo + hi) / 2.0

    a = center + lo * axis
    b = center + hi * axis
    radius = float(np.max(point_segment_distances(points, a, b)))
    return SSVShape(kind=ShapeKind.CAPSULE, radius=radius, point_a=a, point_b=b)


def fit_ssv(points: np.ndarray, tight: bool = True) -> SSVShape:
    """
    Fit the bounding sphere and capsule and keep the smaller one.

    Args:
        points: (N, 3) cluster points
        tight: Tight capsule fit

    Returns:
        SSVShape enclosing every point
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    sphere = fit_sphere(points)
    if len(points) < 2:
        return sphere
    capsule = fit_capsule(points, tight)
    return capsule if capsule.volume < sphere.volume else sphere
