# =============================================================================
# L4 Detection - Coordinate Transforms
# =============================================================================
# Utilities for transforming between the camera frame and the world frame,
# and a holder for asynchronously published robot poses.
# =============================================================================

import threading
import numpy as np
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class Pose:
    """Camera pose in the world frame."""
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0


def rotation_matrix_3d(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Creates a 3D rotation matrix (Z-Y-X convention).

    Args:
        roll: Rotation about X in radians
        pitch: Rotation about Y in radians
        yaw: Rotation about Z in radians

    Returns:
        3x3 rotation matrix
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)
    Rz = np.array([[cy, -sy, 0], [sy, cy, 0], [0, 0, 1]])
    Ry = np.array([[cp, 0, sp], [0, 1, 0], [-sp, 0, cp]])
    Rx = np.array([[1, 0, 0], [0, cr, -sr], [0, sr, cr]])
    return Rz @ Ry @ Rx


def transform_to_world_frame(points_camera: np.ndarray, pose: Pose) -> np.ndarray:
    """
    Transforms points from the camera frame to the world frame.

    Args:
        points_camera: (N, 3) points in camera frame
        pose: Camera pose in world frame

    Returns:
        (N, 3) points in world frame
    """
    R = rotation_matrix_3d(pose.roll, pose.pitch, pose.yaw)
    return points_camera @ R.T + pose.translation


class LatestValue(Generic[T]):
    """
    Most recently published value of an asynchronous service.

    Writers publish from their own thread; readers never block on the
    producer and only ever see the latest value.
    """

    def __init__(self, initial: Optional[T] = None):
        self._value = initial
        self._lock = threading.Lock()

    def publish(self, value: T):
        with self._lock:
            self._value = value

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value
