# =============================================================================
# L5 Tracking - Gaussian Mixture Track State
# =============================================================================
# The unit of persistent identity of the GMM tracker: a Gaussian over the
# obstacle position, its mixture weight, an embedded Kalman filter,
# lifecycle counters and the fitted bounding shape.
# =============================================================================

import logging
import numpy as np
from collections import deque
from typing import Any, Dict, Optional

from .kalman import ConstantVelocityKalmanFilter
from .types import SSVShape
from .config import GMM_HYST_SPLIT_THRESHOLD, TRAJECTORY_LENGTH

logger = logging.getLogger(__name__)

# (2 * pi)^(3/2)
_GAUSS_NORM_3D = (2.0 * np.pi) ** 1.5


class TrackState:
    """
    Persistent obstacle hypothesis.

    The observation covariance must only be set through `set_obs_covar`,
    which keeps the cached inverse, the log-density constant and the
    validity flag consistent.
    """

    def __init__(self, track_id: int, position: np.ndarray,
                 obs_covar: np.ndarray,
                 hyst_split_threshold: int = GMM_HYST_SPLIT_THRESHOLD,
                 trajectory_length: int = TRAJECTORY_LENGTH):
        self.id = track_id
        self.pos = np.asarray(position, dtype=np.float64).copy()   # Observation mean

        self.obs_covar = np.zeros((3, 3))
        self.obs_covar_inv = np.zeros((3, 3))
        self.logpdf_constant = 0.0
        self.valid_obs_covar = False
        self.set_obs_covar(obs_covar)

        self.weight = 0.0           # Mixture coefficient
        self.life_time = 0          # Frames survived
        self.split_counter = 0      # Consecutive frames the split condition held
        self.reset_non_split_counter = 0
        self.frames_unmatched = 0
        self.hyst_split_threshold = hyst_split_threshold
        self.sibling_id: Optional[int] = None   # Track split from or into this one

        self.kalman_filter = ConstantVelocityKalmanFilter()
        self.kalman_filter.init(self.pos)

        self.ssv: Optional[SSVShape] = None
        self.trajectory = deque(maxlen=trajectory_length)
        self.trajectory.append(self.pos.copy())

        # Externally registered resources; each value must provide remove()
        self.vis_handles: Dict[str, Any] = {}

    # =========================================================================
    # Gaussian
    # =========================================================================

    def set_obs_covar(self, cov: np.ndarray):
        """Set the observation covariance and refresh the cached values."""
        cov = np.asarray(cov, dtype=np.float64).reshape(3, 3)
        self.obs_covar = cov

        valid = bool(np.all(np.isfinite(cov))) and np.allclose(cov, cov.T)
        if valid:
            try:
                np.linalg.cholesky(cov)
            except np.linalg.LinAlgError:
                valid = False

        self.valid_obs_covar = valid
        if valid:
            self.obs_covar_inv = np.linalg.inv(cov)
            det = float(np.linalg.det(cov))
            self.logpdf_constant = float(-np.log(_GAUSS_NORM_3D * np.sqrt(det)))
        else:
            logger.warning("Track %s: observation covariance is not positive definite",
                           getattr(self, 'id', '?'))

    @property
    def position(self) -> np.ndarray:
        """Filtered position (mean of the Gaussian)."""
        return self.kalman_filter.get_position()

    @property
    def velocity(self) -> np.ndarray:
        return self.kalman_filter.get_velocity()

    def mahalanobis_sq(self, points: np.ndarray) -> np.ndarray:
        """Squared Mahalanobis distances of points to the filtered position."""
        diff = np.atleast_2d(points) - self.position
        return np.einsum('ij,jk,ik->i', diff, self.obs_covar_inv, diff)

    def logpdf(self, points: np.ndarray) -> np.ndarray:
        """
        Log-density of points under this track's Gaussian.

        Only meaningful while `valid_obs_covar` is True.
        """
        return self.logpdf_constant - 0.5 * self.mahalanobis_sq(points)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def reset_split(self):
        self.split_counter = 0
        self.reset_non_split_counter = 0

    def release_handles(self):
        """Remove every registered handle, even if one of them fails."""
        handles = list(self.vis_handles.values())
        self.vis_handles.clear()
        errors = []
        for handle in handles:
            try:
                handle.remove()
            except Exception as exc:
                errors.append(exc)
        if errors:
            logger.warning("Track %d: %d handle(s) failed to release: %s",
                           self.id, len(errors), errors[0])

    def __repr__(self):
        return (f"TrackState(id={self.id}, pos={np.round(self.position, 3)}, "
                f"life_time={self.life_time}, valid={self.valid_obs_covar})")
