# =============================================================================
# L3 World Model - Scene Objects
# =============================================================================
# Planes and boxes that make up the synthetic depth scene.
# Every object samples its visible surface on a regular lattice.
# =============================================================================

import numpy as np
from typing import List, Optional, Tuple

from .config import (
    SENSOR_SAMPLE_SPACING,
    BOX_SIZE,
    SCENARIO_MIN_BOX_DISTANCE
)


def lattice(lo: float, hi: float, spacing: float) -> np.ndarray:
    """Lattice coordinates in [lo, hi), offset by half a spacing."""
    return np.arange(lo + spacing / 2.0, hi, spacing)


class PlaneSurface:
    """
    Axis-aligned rectangle.

    axis is the normal direction (0, 1 or 2); level its coordinate along
    the normal; extent the (min, max) ranges of the two other axes.
    """

    def __init__(self, axis: int, level: float,
                 extent: Tuple[float, float, float, float],
                 name: str = 'plane'):
        self.axis = axis
        self.level = level
        self.extent = extent
        self.name = name
        self.velocity = np.zeros(3)
        self.dynamic = False

    def sample(self, spacing: float = SENSOR_SAMPLE_SPACING) -> np.ndarray:
        u = lattice(self.extent[0], self.extent[1], spacing)
        v = lattice(self.extent[2], self.extent[3], spacing)
        uu, vv = np.meshgrid(u, v, indexing='ij')
        others = [a for a in range(3) if a != self.axis]
        points = np.empty((uu.size, 3))
        points[:, others[0]] = uu.ravel()
        points[:, others[1]] = vv.ravel()
        points[:, self.axis] = self.level
        return points

    def step(self, dt: float, bounds=None):
        pass


class BoxObject:
    """
    Axis-aligned box, optionally moving with constant velocity.

    The bottom face is never visible and is not sampled.
    """

    def __init__(self, center: np.ndarray, size: float = BOX_SIZE,
                 velocity: Optional[np.ndarray] = None, name: str = 'box'):
        self.center = np.asarray(center, dtype=np.float64).copy()
        self.size = size
        self.velocity = np.zeros(3) if velocity is None else np.asarray(velocity, dtype=np.float64).copy()
        self.name = name

    @property
    def dynamic(self) -> bool:
        return bool(np.any(self.velocity != 0.0))

    def sample(self, spacing: float = SENSOR_SAMPLE_SPACING) -> np.ndarray:
        h = self.size / 2.0
        cx, cy, cz = self.center
        faces = [
            PlaneSurface(2, cz + h, (cx - h, cx + h, cy - h, cy + h)),
            PlaneSurface(0, cx - h, (cy - h, cy + h, cz - h, cz + h)),
            PlaneSurface(0, cx + h, (cy - h, cy + h, cz - h, cz + h)),
            PlaneSurface(1, cy - h, (cx - h, cx + h, cz - h, cz + h)),
            PlaneSurface(1, cy + h, (cx - h, cx + h, cz - h, cz + h)),
        ]
        return np.vstack([face.sample(spacing) for face in faces])

    def step(self, dt: float, bounds: Optional[Tuple[float, float, float, float]] = None):
        """Advance by one frame, bouncing off the XY bounds."""
        self.center = self.center + self.velocity * dt
        if bounds is None:
            return

        h = self.size / 2.0
        x_min, x_max, y_min, y_max = bounds
        if self.center[0] - h < x_min:
            self.center[0] = x_min + h
            self.velocity[0] = abs(self.velocity[0])
        elif self.center[0] + h > x_max:
            self.center[0] = x_max - h
            self.velocity[0] = -abs(self.velocity[0])

        if self.center[1] - h < y_min:
            self.center[1] = y_min + h
            self.velocity[1] = abs(self.velocity[1])
        elif self.center[1] + h > y_max:
            self.center[1] = y_max - h
            self.velocity[1] = -abs(self.velocity[1])


class ObstacleGenerator:
    """
    Box generator for the scenario presets.
    """

    @staticmethod
    def generate_random_boxes(num_boxes: int,
                              x_range: Tuple[float, float],
                              y_range: Tuple[float, float],
                              rng: np.random.Generator,
                              size: float = BOX_SIZE,
                              min_dist: float = SCENARIO_MIN_BOX_DISTANCE) -> List[BoxObject]:
        """
        Generate non-overlapping boxes resting on the floor.

        Args:
            num_boxes: Number of boxes to generate
            x_range: X range (min, max)
            y_range: Y range (min, max)
            rng: Random generator
            size: Box edge length
            min_dist: Minimum XY distance between box centers

        Returns:
            List of BoxObject (fewer than requested if placement fails)
        """
        boxes: List[BoxObject] = []
        for _ in range(num_boxes):
            for _attempt in range(100):
                x = rng.uniform(*x_range)
                y = rng.uniform(*y_range)
                if all(np.hypot(x - b.center[0], y - b.center[1]) >= min_dist for b in boxes):
                    boxes.append(BoxObject(np.array([x, y, size / 2.0]), size,
                                           name=f'box{len(boxes)}'))
                    break
        return boxes

    @staticmethod
    def create_moving_box(position: np.ndarray, velocity: np.ndarray,
                          size: float = BOX_SIZE, name: str = 'moving') -> BoxObject:
        """Box resting on the floor at XY position, moving in XY."""
        center = np.array([position[0], position[1], size / 2.0])
        vel = np.array([velocity[0], velocity[1], 0.0])
        return BoxObject(center, size, vel, name=name)
