# =============================================================================
# L5 Tracking - Types and Data Structures
# =============================================================================
# Shapes, tracker outputs and typed option structures.
# Note: Per-frame observation types are in L4_detection.
# =============================================================================

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from L4_detection import ObstacleObservation

from .config import (
    KALMAN_SYSTEM_NOISE_POSITION,
    KALMAN_SYSTEM_NOISE_VELOCITY,
    KALMAN_MEASUREMENT_NOISE,
    GMM_MAHALANOBIS_GATE,
    GMM_MAX_ASSOCIATION_DISTANCE,
    GMM_TRACK_TIMEOUT,
    GMM_WEIGHT_DECAY,
    GMM_HYST_SPLIT_THRESHOLD,
    GMM_SPLIT_RESET_FRAMES,
    GMM_SPLIT_MIN_FRACTION,
    GMM_SPLIT_SEPARATION,
    GMM_SPLIT_MIN_POINTS,
    GMM_SPLIT_SAMPLE_SIZE,
    SSV_TIGHT_FIT,
    SSV_FILTER_POSITIONS,
    TRAJECTORY_LENGTH
)


# =============================================================================
# Enumerations
# =============================================================================

class ShapeKind(Enum):
    """Swept sphere volume primitive."""
    SPHERE = "SPHERE"
    CAPSULE = "CAPSULE"


class ColorMode(Enum):
    """How the visualizer colors tracks."""
    NONE = 0
    SOFT_ASSIGNMENT = 1
    HARD_ASSIGNMENT = 2


# =============================================================================
# Shapes
# =============================================================================

@dataclass
class SSVShape:
    """
    Sphere (point_a only) or capsule (segment point_a-point_b) with radius.
    """
    kind: ShapeKind
    radius: float
    point_a: np.ndarray
    point_b: Optional[np.ndarray] = None

    @property
    def volume(self) -> float:
        sphere = 4.0 / 3.0 * np.pi * self.radius ** 3
        if self.kind == ShapeKind.SPHERE:
            return sphere
        length = float(np.linalg.norm(self.point_b - self.point_a))
        return sphere + np.pi * self.radius ** 2 * length

    def translated(self, offset: np.ndarray) -> 'SSVShape':
        return SSVShape(
            kind=self.kind,
            radius=self.radius,
            point_a=self.point_a + offset,
            point_b=None if self.point_b is None else self.point_b + offset
        )


# =============================================================================
# Tracker Output
# =============================================================================

@dataclass
class TrackedObstacle:
    """
    Obstacle with a stable identity.

    This is the main data structure published by the trackers.
    """
    id: int
    position: np.ndarray                # Filtered position
    velocity: np.ndarray                # Estimated velocity
    life_time: int                      # Frames the track has existed
    weight: float                       # Mixture weight
    ssv: Optional[SSVShape] = None      # Fitted bounding shape
    observation: Optional[ObstacleObservation] = None


# =============================================================================
# Options
# =============================================================================

@dataclass
class ObstacleTrackerParams:
    """Tuning of the Gaussian mixture tracker."""
    noise_position: float = KALMAN_SYSTEM_NOISE_POSITION
    noise_velocity: float = KALMAN_SYSTEM_NOISE_VELOCITY
    noise_measurement: float = KALMAN_MEASUREMENT_NOISE
    mahalanobis_gate: float = GMM_MAHALANOBIS_GATE
    max_association_distance: float = GMM_MAX_ASSOCIATION_DISTANCE
    track_timeout: int = GMM_TRACK_TIMEOUT
    weight_decay: float = GMM_WEIGHT_DECAY
    hyst_split_threshold: int = GMM_HYST_SPLIT_THRESHOLD
    split_reset_frames: int = GMM_SPLIT_RESET_FRAMES
    split_min_fraction: float = GMM_SPLIT_MIN_FRACTION
    split_separation: float = GMM_SPLIT_SEPARATION
    split_min_points: int = GMM_SPLIT_MIN_POINTS
    split_sample_size: int = GMM_SPLIT_SAMPLE_SIZE
    enable_tight_fit: bool = SSV_TIGHT_FIT
    filter_ssv_positions: bool = SSV_FILTER_POSITIONS


@dataclass
class TrackVisualizerOptions:
    """Display options of the track visualizer, one field per option."""
    draw_gaussians: bool = True
    draw_ssvs: bool = True
    draw_trajectories: bool = True
    draw_velocities: bool = True
    color_mode: ColorMode = ColorMode.HARD_ASSIGNMENT
    trajectory_length: int = TRAJECTORY_LENGTH
    gaussian_color: Tuple[float, float, float, float] = (1.0, 0.35, 0.2, 0.7)
    ssv_color: Tuple[float, float, float, float] = (1.0, 0.35, 0.2, 0.7)
    velocity_scale: float = 1.0
    ellipse_sigma: float = 2.0
