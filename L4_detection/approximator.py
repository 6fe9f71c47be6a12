# =============================================================================
# L4 Detection - Object Approximators
# =============================================================================
# Shape approximation of obstacle clusters. The detector only relies on the
# output contract: approximate(points) -> ObjectModel.
# =============================================================================

import numpy as np
from abc import ABC, abstractmethod

from .types import ObjectModel


class ObjectApproximator(ABC):
    """Turns a cluster into a geometric model."""

    @abstractmethod
    def approximate(self, points: np.ndarray) -> ObjectModel:
        pass


class BoundingSphereApproximator(ObjectApproximator):
    """Sphere centred on the centroid enclosing every point."""

    def approximate(self, points: np.ndarray) -> ObjectModel:
        center = points.mean(axis=0)
        radius = float(np.max(np.linalg.norm(points - center, axis=1)))
        return ObjectModel(kind="sphere", center=center, radius=radius)
