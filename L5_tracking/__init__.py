# =============================================================================
# L5 Tracking Package
# =============================================================================
# Obstacle tracking layer.
#
# Responsibilities:
# - Constant velocity Kalman filtering of obstacle positions
# - Per-id Kalman tracker for pre-labeled obstacles
# - Gaussian mixture tracker with split/merge/timeout lifecycle
# - Swept sphere volume shape fit
#
# Usage:
#   from L5_tracking import GMMObstacleTracker
#   tracker = GMMObstacleTracker()
#   obstacle_detector.attach_aggregator(tracker)
#
# The matplotlib view lives in L5_tracking.visualizer and is imported
# explicitly, so the tracking core does not load pyplot.
# =============================================================================

# Types
from .types import (
    ShapeKind,
    ColorMode,
    SSVShape,
    TrackedObstacle,
    ObstacleTrackerParams,
    TrackVisualizerOptions
)

# Core components
from .kalman import ConstantVelocityKalmanFilter
from .kalman_tracker import FrameTimer, KalmanObstacleTracker
from .ssv import fit_ssv, fit_sphere, fit_capsule
from .gmm_state import TrackState
from .gmm_tracker import TrackObserver, GMMObstacleTracker

__all__ = [
    # Types
    'ShapeKind',
    'ColorMode',
    'SSVShape',
    'TrackedObstacle',
    'ObstacleTrackerParams',
    'TrackVisualizerOptions',

    # Filters and shapes
    'ConstantVelocityKalmanFilter',
    'fit_ssv',
    'fit_sphere',
    'fit_capsule',

    # Trackers
    'FrameTimer',
    'KalmanObstacleTracker',
    'TrackState',
    'TrackObserver',
    'GMMObstacleTracker',
]

__version__ = '2.0.0'
