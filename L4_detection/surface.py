# =============================================================================
# L4 Detection - Surface Segmenter
# =============================================================================
# Iteratively removes planes from a cloud, classifies them into surface
# groups by normal orientation, and clusters each group into spatially
# disjoint surfaces. Separates ramps and walls from the floor.
# =============================================================================

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .types import PlaneCoefficients
from .clustering import EuclideanClusterer
from .source import finite_points

from .config import (
    SEGMENTER_MAX_ITERATIONS,
    SEGMENTER_DISTANCE_THRESHOLD,
    SEGMENTER_MIN_FILTER_PERCENTAGE,
    SEGMENTER_MIN_PLANE_FRACTION,
    SEGMENTER_ANGLE_TOLERANCE_DEG,
    SURFACE_CLUSTER_TOLERANCE,
    SURFACE_CLUSTER_MIN_SIZE,
    SURFACE_CLUSTER_MAX_SIZE
)

logger = logging.getLogger(__name__)


# =============================================================================
# Plane Fitting
# =============================================================================

def fit_plane_lsq(points: np.ndarray) -> PlaneCoefficients:
    """Least-squares plane through points (smallest principal direction)."""
    centroid = points.mean(axis=0)
    _, _, vt = np.linalg.svd(points - centroid, full_matrices=False)
    normal = vt[-1]
    return PlaneCoefficients(normal=normal, d=float(-normal @ centroid))


def fit_plane_ransac(points: np.ndarray,
                     distance_threshold: float = SEGMENTER_DISTANCE_THRESHOLD,
                     max_iterations: int = SEGMENTER_MAX_ITERATIONS,
                     rng: Optional[np.random.Generator] = None
                     ) -> Tuple[Optional[PlaneCoefficients], np.ndarray]:
    """
    Find the best-supported plane with RANSAC.

    The winning hypothesis is refined by a least-squares fit to its
    inliers; the refinement is kept only if it does not lose support.

    Args:
        points: (N, 3) array
        distance_threshold: Inlier distance tolerance (meters)
        max_iterations: Number of hypotheses to test
        rng: Random generator

    Returns:
        Tuple (plane or None, inlier indices)
    """
    rng = rng if rng is not None else np.random.default_rng()
    n_points = len(points)
    if n_points < 3:
        return None, np.empty(0, dtype=np.int64)

    best_inliers = 0
    best_plane = None

    for _ in range(max_iterations):
        idx = rng.choice(n_points, 3, replace=False)
        p1, p2, p3 = points[idx]

        normal = np.cross(p2 - p1, p3 - p1)
        norm = np.linalg.norm(normal)
        if norm < 1e-9:
            continue  # Degenerate (collinear) sample
        normal = normal / norm
        plane = PlaneCoefficients(normal=normal, d=float(-normal @ p1))

        inliers = np.count_nonzero(plane.distance(points) <= distance_threshold)
        if inliers > best_inliers:
            best_inliers = inliers
            best_plane = plane

    if best_plane is None:
        return None, np.empty(0, dtype=np.int64)

    inliers = np.flatnonzero(best_plane.distance(points) <= distance_threshold)
    if len(inliers) >= 3:
        refined = fit_plane_lsq(points[inliers])
        refined_inliers = np.flatnonzero(refined.distance(points) <= distance_threshold)
        if len(refined_inliers) >= len(inliers):
            return refined, refined_inliers
    return best_plane, inliers


def plane_angle(a: PlaneCoefficients, b: PlaneCoefficients) -> float:
    """Angle between two plane normals in degrees."""
    cos_angle = np.clip(a.normal @ b.normal, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


# =============================================================================
# Surface Groups
# =============================================================================

@dataclass
class SurfaceGroup:
    """Coplanar plane extractions sharing one representative plane."""
    coefficients: PlaneCoefficients
    parts: List[np.ndarray] = field(default_factory=list)

    def add(self, points: np.ndarray):
        self.parts.append(points)

    @property
    def points(self) -> np.ndarray:
        if not self.parts:
            return np.empty((0, 3))
        return np.vstack(self.parts)

    @property
    def num_points(self) -> int:
        return sum(len(p) for p in self.parts)


def classify_plane(groups: List[SurfaceGroup], points: np.ndarray,
                   coefficients: PlaneCoefficients,
                   angle_tolerance: float = SEGMENTER_ANGLE_TOLERANCE_DEG) -> int:
    """
    Put a plane extraction into the first matching surface group.

    Normals within `angle_tolerance` of a group's representative normal,
    or within it of the antiparallel normal, belong to that group. A new
    group is appended otherwise.

    Returns:
        Index of the group that received the points
    """
    for i, group in enumerate(groups):
        angle = plane_angle(group.coefficients, coefficients)
        if angle < angle_tolerance or angle > 180.0 - angle_tolerance:
            group.add(points)
            return i

    groups.append(SurfaceGroup(coefficients=coefficients, parts=[points]))
    return len(groups) - 1


@dataclass
class SegmentationResult:
    """Output of one SurfaceSegmenter run."""
    cloud_minus_surfaces: np.ndarray           # Residual (obstacle) cloud
    surfaces: List[np.ndarray]                 # One cloud per surface cluster
    coefficients: List[PlaneCoefficients]      # One per surface group
    groups: List[SurfaceGroup] = field(default_factory=list)

    @property
    def surface_cloud(self) -> np.ndarray:
        """All extracted planar inliers."""
        parts = [g.points for g in self.groups if g.num_points]
        return np.vstack(parts) if parts else np.empty((0, 3))


class SurfaceSegmenter:
    """
    Plane removal + surface classification + surface clustering.

    Pipeline:
    1. Extract the best plane while enough of the cloud remains
    2. Classify each plane into a surface group by normal angle
    3. Cluster each group into spatially disjoint surfaces
    """

    def __init__(self,
                 max_iterations: int = SEGMENTER_MAX_ITERATIONS,
                 distance_threshold: float = SEGMENTER_DISTANCE_THRESHOLD,
                 min_filter_percentage: float = SEGMENTER_MIN_FILTER_PERCENTAGE,
                 min_plane_fraction: float = SEGMENTER_MIN_PLANE_FRACTION,
                 angle_tolerance: float = SEGMENTER_ANGLE_TOLERANCE_DEG,
                 cluster_tolerance: float = SURFACE_CLUSTER_TOLERANCE,
                 cluster_min_size: int = SURFACE_CLUSTER_MIN_SIZE,
                 cluster_max_size: Optional[int] = SURFACE_CLUSTER_MAX_SIZE,
                 seed: Optional[int] = None):
        """
        Args:
            max_iterations: RANSAC iteration cap
            distance_threshold: RANSAC inlier tolerance (meters)
            min_filter_percentage: Stop once this fraction of points remains
            min_plane_fraction: Minimum plane support (fraction of input)
            angle_tolerance: Classification angle tolerance (degrees)
            cluster_tolerance: Surface clustering neighbour distance (meters)
            cluster_min_size: Minimum points per surface cluster
            cluster_max_size: Maximum points per surface cluster
            seed: Seed for the RANSAC random generator
        """
        self.max_iterations = max_iterations
        self.distance_threshold = distance_threshold
        self.min_filter_percentage = min_filter_percentage
        self.min_plane_fraction = min_plane_fraction
        self.angle_tolerance = angle_tolerance
        self.cluster_tolerance = cluster_tolerance
        self.cluster_min_size = cluster_min_size
        self.cluster_max_size = cluster_max_size
        self.rng = np.random.default_rng(seed)

    def find_surfaces(self, cloud: np.ndarray) -> Tuple[np.ndarray, List[SurfaceGroup]]:
        """
        Remove planes from the cloud.

        Returns:
            Tuple (residual cloud, surface groups)
        """
        groups: List[SurfaceGroup] = []
        original_size = len(cloud)
        point_threshold = self.min_filter_percentage * original_size
        min_plane_points = max(3, self.min_plane_fraction * original_size)

        remaining = cloud
        while len(remaining) > point_threshold:
            plane, inliers = fit_plane_ransac(
                remaining, self.distance_threshold, self.max_iterations, self.rng
            )
            # No more planes to remove
            if plane is None or len(inliers) == 0 or len(inliers) < min_plane_points:
                break

            planar = remaining[inliers]
            remaining = np.delete(remaining, inliers, axis=0)
            index = classify_plane(groups, planar, plane, self.angle_tolerance)
            logger.debug("Plane with %d inliers -> surface group %d",
                         len(inliers), index)

        return remaining, groups

    def cluster_group(self, group: SurfaceGroup) -> List[np.ndarray]:
        points = group.points
        max_size = self.cluster_max_size if self.cluster_max_size is not None else len(points)
        clusterer = EuclideanClusterer(tolerance=self.cluster_tolerance,
                                       min_size=self.cluster_min_size,
                                       max_size=max_size)
        return clusterer.cluster(points)

    def segment(self, cloud: np.ndarray) -> SegmentationResult:
        """
        Segment a cloud into surfaces and residual.

        Args:
            cloud: (N, 3) array; non-finite points are removed first

        Returns:
            SegmentationResult
        """
        cloud = finite_points(cloud)
        residual, groups = self.find_surfaces(cloud)

        surfaces = []
        for group in groups:
            surfaces.extend(self.cluster_group(group))

        logger.debug("Segmented %d points: %d surface groups, %d surfaces, %d residual",
                     len(cloud), len(groups), len(surfaces), len(residual))

        return SegmentationResult(
            cloud_minus_surfaces=residual,
            surfaces=surfaces,
            coefficients=[g.coefficients for g in groups],
            groups=groups
        )
