# =============================================================================
# L4 Detection - Point-wise Filters
# =============================================================================
# Stateless-per-point transforms and predicates, applied in registration
# order. A point rejected by one filter is not seen by later filters.
# =============================================================================

import numpy as np
from abc import ABC, abstractmethod
from typing import List, Optional

from .transforms import Pose, LatestValue, transform_to_world_frame

from .config import (
    CALIBRATION_A,
    CALIBRATION_B,
    CROP_X_MAX,
    CROP_X_MIN,
    CROP_Y_MAX,
    CROP_Y_MIN,
    TRUNCATE_DECIMALS
)


class PointFilter(ABC):
    """
    A filter applied to individual points.

    `apply` works on one point (modified in place) and returns whether it is
    kept. `apply_batch` is the vectorized equivalent used by the chain;
    subclasses override it when a numpy version exists.
    """

    def prepare_next(self):
        """Reset hook called once before each frame."""
        pass

    @abstractmethod
    def apply(self, point: np.ndarray) -> bool:
        pass

    def apply_batch(self, points: np.ndarray) -> np.ndarray:
        """
        Apply the filter to an (N, 3) array in place.

        Returns:
            Boolean mask of kept points
        """
        return np.array([self.apply(p) for p in points], dtype=bool)


class SensorCalibrationFilter(PointFilter):
    """Linear correction of one coordinate: v' = a * v + b."""

    def __init__(self, a: float = CALIBRATION_A, b: float = CALIBRATION_B,
                 axis: int = 2):
        self.a = a
        self.b = b
        self.axis = axis

    def apply(self, point: np.ndarray) -> bool:
        point[self.axis] = self.a * point[self.axis] + self.b
        return True

    def apply_batch(self, points: np.ndarray) -> np.ndarray:
        points[:, self.axis] = self.a * points[:, self.axis] + self.b
        return np.ones(len(points), dtype=bool)


class CropFilter(PointFilter):
    """Rejects points outside an axis-aligned XY window."""

    def __init__(self, x_max: float = CROP_X_MAX, x_min: float = CROP_X_MIN,
                 y_max: float = CROP_Y_MAX, y_min: float = CROP_Y_MIN):
        self.x_max = x_max
        self.x_min = x_min
        self.y_max = y_max
        self.y_min = y_min

    def apply(self, point: np.ndarray) -> bool:
        return (self.x_min <= point[0] <= self.x_max and
                self.y_min <= point[1] <= self.y_max)

    def apply_batch(self, points: np.ndarray) -> np.ndarray:
        x, y = points[:, 0], points[:, 1]
        return ((x >= self.x_min) & (x <= self.x_max) &
                (y >= self.y_min) & (y <= self.y_max))


class TruncateFilter(PointFilter):
    """Truncates coordinates toward zero to a fixed number of decimals."""

    def __init__(self, decimals: int = TRUNCATE_DECIMALS):
        self.decimals = decimals
        self._scale = 10.0 ** decimals

    def apply(self, point: np.ndarray) -> bool:
        point[:] = np.trunc(point * self._scale) / self._scale
        return True

    def apply_batch(self, points: np.ndarray) -> np.ndarray:
        points[:] = np.trunc(points * self._scale) / self._scale
        return np.ones(len(points), dtype=bool)


class PoseTransformFilter(PointFilter):
    """
    Moves camera-frame points into the world frame using the latest
    published pose. The pose is read once per frame in `prepare_next`;
    while no pose has been published, points pass through untouched.
    """

    def __init__(self, pose_provider: LatestValue):
        self.pose_provider = pose_provider
        self._pose: Optional[Pose] = None

    def prepare_next(self):
        self._pose = self.pose_provider.get()

    def apply(self, point: np.ndarray) -> bool:
        if self._pose is not None:
            point[:] = transform_to_world_frame(point.reshape(1, 3), self._pose)[0]
        return True

    def apply_batch(self, points: np.ndarray) -> np.ndarray:
        if self._pose is not None:
            points[:] = transform_to_world_frame(points, self._pose)
        return np.ones(len(points), dtype=bool)


class PointFilterChain:
    """Ordered, mutable list of point filters."""

    def __init__(self, filters: Optional[List[PointFilter]] = None):
        self._filters: List[PointFilter] = list(filters) if filters else []

    def add_filter(self, point_filter: PointFilter):
        self._filters.append(point_filter)

    def remove_filter(self, point_filter: PointFilter):
        if point_filter in self._filters:
            self._filters.remove(point_filter)

    @property
    def filters(self) -> List[PointFilter]:
        return list(self._filters)

    def prepare_next(self):
        for point_filter in self._filters:
            point_filter.prepare_next()

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Run all filters over a cloud.

        Args:
            points: (N, 3) finite points (not modified)

        Returns:
            Surviving, possibly transformed points
        """
        survivors = np.array(points, dtype=np.float64).reshape(-1, 3)
        for point_filter in self._filters:
            if len(survivors) == 0:
                break
            mask = point_filter.apply_batch(survivors)
            survivors = survivors[mask]
        return survivors
