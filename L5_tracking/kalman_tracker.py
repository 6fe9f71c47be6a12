# =============================================================================
# L5 Tracking - Kalman Obstacle Tracker
# =============================================================================
# One constant velocity Kalman filter per obstacle id. Ids are assigned
# upstream; this tracker only smooths positions and estimates velocities.
# =============================================================================

import logging
import time
from typing import Callable, Dict, List, Optional

from L4_detection import ObstacleAggregator, ObstacleObservation, Subject

from .kalman import ConstantVelocityKalmanFilter
from .config import (
    KALMAN_INITIAL_DT,
    KALMAN_SYSTEM_NOISE_POSITION,
    KALMAN_SYSTEM_NOISE_VELOCITY,
    KALMAN_MEASUREMENT_NOISE
)

logger = logging.getLogger(__name__)


class FrameTimer:
    """Real time elapsed between consecutive calls."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter,
                 initial_dt: float = KALMAN_INITIAL_DT):
        self.clock = clock
        self.initial_dt = initial_dt
        self._last: Optional[float] = None

    def tick(self) -> float:
        """Seconds since the previous tick (initial_dt on the first call)."""
        now = self.clock()
        dt = self.initial_dt if self._last is None else now - self._last
        self._last = now
        return dt


class KalmanObstacleTracker(Subject, ObstacleAggregator):
    """
    Per-id Kalman smoothing of obstacle positions.

    For every observation with an id:
    - unseen id: start a filter at the position with zero velocity
    - known id: predict by the elapsed time, update with the position and
      overwrite the observation's center/velocity with the estimate
    """

    def __init__(self,
                 noise_position: float = KALMAN_SYSTEM_NOISE_POSITION,
                 noise_velocity: float = KALMAN_SYSTEM_NOISE_VELOCITY,
                 noise_measurement: float = KALMAN_MEASUREMENT_NOISE,
                 clock: Callable[[], float] = time.perf_counter):
        """
        Args:
            noise_position: Position process noise
            noise_velocity: Velocity process noise
            noise_measurement: Measurement noise
            clock: Time source in seconds
        """
        super().__init__()
        self.noise_position = noise_position
        self.noise_velocity = noise_velocity
        self.noise_measurement = noise_measurement
        self.timer = FrameTimer(clock)
        self.states: Dict[int, ConstantVelocityKalmanFilter] = {}

    def update(self, obstacles: List[ObstacleObservation]) -> List[ObstacleObservation]:
        dt = self.timer.tick()

        for obstacle in obstacles:
            if obstacle.id is None:
                continue

            kf = self.states.get(obstacle.id)
            if kf is None:
                kf = ConstantVelocityKalmanFilter()
                kf.init(obstacle.center)
                self.states[obstacle.id] = kf
                logger.debug("New Kalman track %d", obstacle.id)
                continue

            kf.predict(dt, self.noise_position, self.noise_velocity)
            kf.update(obstacle.center, self.noise_measurement)
            obstacle.center, obstacle.velocity = kf.get_state()

        return obstacles

    def update_obstacles(self, obstacles: List[ObstacleObservation]):
        self.update(obstacles)
        for aggregator in self.observers:
            aggregator.update_obstacles(obstacles)

    def reset(self, obstacle_id: int):
        """Forget the filter of an obstacle. Unknown ids are ignored."""
        self.states.pop(obstacle_id, None)
