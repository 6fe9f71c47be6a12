# =============================================================================
# L4 Detection - Types and Data Structures
# =============================================================================
# Common data structures for filtering, segmentation and obstacle detection.
# =============================================================================

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


# Integer grid cell of a point; only ever used as a dictionary key
VoxelKey = Tuple[int, int, int]


# =============================================================================
# Frame Data Structures
# =============================================================================

@dataclass
class Frame:
    """A single depth frame as delivered by a frame source."""
    seq: int                                   # Monotonically increasing index
    points: np.ndarray                         # (N, 3) finite points
    sensor_origin: Optional[np.ndarray] = None


@dataclass
class PlaneCoefficients:
    """Plane n . p + d = 0 with unit normal n."""
    normal: np.ndarray
    d: float

    @property
    def values(self) -> np.ndarray:
        """Returns [a, b, c, d]."""
        return np.append(self.normal, self.d)

    def distance(self, points: np.ndarray) -> np.ndarray:
        """Absolute point-to-plane distances."""
        return np.abs(points @ self.normal + self.d)


@dataclass
class ObjectModel:
    """Geometric approximation of a cluster, as produced by an approximator."""
    kind: str                       # e.g. "sphere"
    center: np.ndarray
    radius: float


@dataclass
class ObstacleObservation:
    """
    Unlabeled obstacle cluster produced once per frame.

    Trackers annotate `id`, `center` and `velocity` in place.
    """
    points: np.ndarray                  # (N, 3) cluster points
    center: np.ndarray                  # Cluster centroid
    covariance: np.ndarray              # 3x3 sample covariance
    model: Optional[ObjectModel] = None
    id: Optional[int] = None
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @classmethod
    def from_points(cls, points: np.ndarray,
                    model: Optional[ObjectModel] = None) -> 'ObstacleObservation':
        points = np.asarray(points, dtype=np.float64)
        center = points.mean(axis=0)
        if len(points) > 1:
            covariance = np.cov(points, rowvar=False)
        else:
            covariance = np.zeros((3, 3))
        return cls(points=points, center=center, covariance=covariance, model=model)

    @property
    def num_points(self) -> int:
        return len(self.points)


@dataclass
class FrameData:
    """Everything the pipeline knows about one frame."""
    frame_num: int
    cloud: np.ndarray
    sensor_origin: Optional[np.ndarray] = None
    cloud_minus_surfaces: Optional[np.ndarray] = None
    surfaces: List[np.ndarray] = field(default_factory=list)
    plane_coefficients: List[PlaneCoefficients] = field(default_factory=list)
    obstacles: List[ObstacleObservation] = field(default_factory=list)
