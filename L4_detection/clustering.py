# =============================================================================
# L4 Detection - Euclidean Clustering
# =============================================================================
# Splits a cloud into spatially disjoint clusters using DBSCAN.
# =============================================================================

import numpy as np
from typing import List, Optional
from sklearn.cluster import DBSCAN

from .config import (
    OBSTACLE_CLUSTER_TOLERANCE,
    OBSTACLE_CLUSTER_MIN_SIZE,
    OBSTACLE_CLUSTER_MAX_SIZE
)


class EuclideanClusterer:
    """
    Euclidean cluster extraction.

    With `min_samples=1` DBSCAN reduces to connected components of the
    "closer than tolerance" graph; with a larger value sparse points are
    labelled noise and dropped. Clusters outside [min_size, max_size] are
    discarded.
    """

    def __init__(self,
                 tolerance: float = OBSTACLE_CLUSTER_TOLERANCE,
                 min_size: int = OBSTACLE_CLUSTER_MIN_SIZE,
                 max_size: Optional[int] = OBSTACLE_CLUSTER_MAX_SIZE,
                 min_samples: int = 1):
        """
        Args:
            tolerance: Maximum neighbour distance (meters)
            min_size: Minimum number of points for a valid cluster
            max_size: Maximum number of points (None = unbounded)
            min_samples: DBSCAN core point threshold
        """
        self.tolerance = tolerance
        self.min_size = min_size
        self.max_size = max_size
        self.min_samples = min_samples

    def cluster_indices(self, points: np.ndarray) -> List[np.ndarray]:
        """
        Group points into clusters.

        Args:
            points: (N, 3) array

        Returns:
            List of index arrays, largest cluster first
        """
        if len(points) < max(self.min_size, 1):
            return []

        db = DBSCAN(eps=self.tolerance, min_samples=self.min_samples).fit(points)
        labels = db.labels_

        clusters = []
        for label in set(labels):
            if label == -1:  # Ignore noise
                continue
            indices = np.flatnonzero(labels == label)
            if len(indices) < self.min_size:
                continue
            if self.max_size is not None and len(indices) > self.max_size:
                continue
            clusters.append(indices)

        clusters.sort(key=len, reverse=True)
        return clusters

    def cluster(self, points: np.ndarray) -> List[np.ndarray]:
        """Returns the point arrays of all clusters."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return [points[idx] for idx in self.cluster_indices(points)]

    def segment(self, cloud: np.ndarray) -> List[np.ndarray]:
        """Segmentation strategy interface used by the ObstacleDetector."""
        return self.cluster(cloud)
