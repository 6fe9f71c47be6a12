# =============================================================================
# L5 Tracking - Constant Velocity Kalman Filter
# =============================================================================
# Linear Kalman Filter with a constant velocity model in 3D.
# =============================================================================

import numpy as np
from typing import Tuple

from .config import (
    KALMAN_SYSTEM_NOISE_POSITION,
    KALMAN_SYSTEM_NOISE_VELOCITY,
    KALMAN_MEASUREMENT_NOISE,
    KALMAN_INITIAL_COVARIANCE,
    KALMAN_SEED_VELOCITY
)


class ConstantVelocityKalmanFilter:
    """
    Kalman Filter with Constant Velocity model.

    State: [x, y, z, vx, vy, vz]
    Observation: [x, y, z]

    Used to track obstacle position and estimate velocity.
    """

    def __init__(self,
                 initial_covariance: float = KALMAN_INITIAL_COVARIANCE,
                 seed_velocity: bool = KALMAN_SEED_VELOCITY):
        """
        Args:
            initial_covariance: Diagonal of the initial state covariance
            seed_velocity: Set the velocity from the first two measurements
        """
        self.initial_covariance = initial_covariance
        self.seed_velocity = seed_velocity

        # Observation matrix (we only observe position)
        self.H = np.hstack([np.eye(3), np.zeros((3, 3))])

        self.x = np.zeros(6)
        self.P = np.eye(6) * initial_covariance

        self.initialized = False
        self.update_count = 0
        self._first_position = None
        self._elapsed = 0.0

    def init(self, position: np.ndarray, velocity: np.ndarray = None):
        """Initialize the state; velocity defaults to zero."""
        self.x[:3] = np.asarray(position, dtype=np.float64)
        self.x[3:] = 0.0 if velocity is None else np.asarray(velocity, dtype=np.float64)
        self.P = np.eye(6) * self.initial_covariance
        self.initialized = True
        self.update_count = 1
        self._first_position = self.x[:3].copy()
        self._elapsed = 0.0

    def predict(self, dt: float,
                noise_position: float = KALMAN_SYSTEM_NOISE_POSITION,
                noise_velocity: float = KALMAN_SYSTEM_NOISE_VELOCITY) -> np.ndarray:
        """
        Prediction step: propagate state using motion model.

        Args:
            dt: Time since the previous step (seconds)
            noise_position: Position process noise
            noise_velocity: Velocity process noise

        Returns:
            Predicted state
        """
        if not self.initialized:
            return self.x.copy()

        F = np.eye(6)
        F[0:3, 3:6] = np.eye(3) * dt
        Q = np.diag([noise_position] * 3 + [noise_velocity] * 3)

        self.x = F @ self.x
        self.P = F @ self.P @ F.T + Q
        self._elapsed += dt
        return self.x.copy()

    def update(self, z: np.ndarray,
               noise_measurement: float = KALMAN_MEASUREMENT_NOISE) -> np.ndarray:
        """
        Update step: incorporate new measurement.

        Args:
            z: Measured position [x, y, z]
            noise_measurement: Measurement noise

        Returns:
            Updated state vector
        """
        z = np.asarray(z, dtype=np.float64).reshape(3)

        if not self.initialized:
            self.init(z)
            return self.x.copy()

        self.update_count += 1

        # Two-point initialization: state and covariance of the finite difference
        if self.seed_velocity and self.update_count == 2 and self._elapsed > 0:
            T = self._elapsed
            r = noise_measurement
            self.x[3:] = (z - self._first_position) / T
            self.x[:3] = z
            self.P = np.block([[np.eye(3) * r, np.eye(3) * r / T],
                               [np.eye(3) * r / T, np.eye(3) * 2.0 * r / T ** 2]])
            return self.x.copy()

        # Innovation (measurement residual)
        y = z - self.H @ self.x
        S = self.H @ self.P @ self.H.T + np.eye(3) * noise_measurement

        # Kalman Gain
        K = self.P @ self.H.T @ np.linalg.inv(S)
        self.x = self.x + K @ y
        self.P = (np.eye(6) - K @ self.H) @ self.P

        return self.x.copy()

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get estimated position and velocity.

        Returns:
            Tuple (position [x,y,z], velocity [vx,vy,vz])
        """
        return self.x[:3].copy(), self.x[3:].copy()

    def get_position(self) -> np.ndarray:
        """Returns estimated position [x, y, z]."""
        return self.x[:3].copy()

    def get_velocity(self) -> np.ndarray:
        """Returns estimated velocity [vx, vy, vz]."""
        return self.x[3:].copy()

    def get_velocity_magnitude(self) -> float:
        """Returns velocity magnitude (speed)."""
        return float(np.linalg.norm(self.x[3:]))
