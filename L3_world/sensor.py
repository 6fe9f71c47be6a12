# =============================================================================
# L3 World Model - Depth Sensor Simulator
# =============================================================================

import numpy as np
from typing import List

from .config import (
    SENSOR_SAMPLE_SPACING,
    SENSOR_NOISE_STD,
    SENSOR_DROPOUT_RATE,
    SENSOR_NAN_RATE,
    SENSOR_DEPTH_GAIN,
    SENSOR_DEPTH_OFFSET
)


class DepthSensorSimulator:
    """
    Depth camera simulator.
    Emulates a point cloud sensor with noise, dropout, invalid returns and
    a linear depth distortion.
    """

    def __init__(self, spacing: float = SENSOR_SAMPLE_SPACING,
                 noise_std: float = SENSOR_NOISE_STD,
                 dropout_rate: float = SENSOR_DROPOUT_RATE,
                 nan_rate: float = SENSOR_NAN_RATE,
                 depth_gain: float = SENSOR_DEPTH_GAIN,
                 depth_offset: float = SENSOR_DEPTH_OFFSET,
                 rng: np.random.Generator = None):
        """
        Initialize the depth sensor simulator.

        Args:
            spacing: Surface sampling lattice spacing
            noise_std: Noise standard deviation
            dropout_rate: Fraction of points dropped each frame
            nan_rate: Fraction of points replaced by NaN
            depth_gain: Raw depth gain
            depth_offset: Raw depth offset
            rng: Random generator
        """
        self.spacing = spacing
        self.noise_std = noise_std
        self.dropout_rate = dropout_rate
        self.nan_rate = nan_rate
        self.depth_gain = depth_gain
        self.depth_offset = depth_offset
        self.rng = rng if rng is not None else np.random.default_rng()

    def scan(self, objects: List) -> np.ndarray:
        """
        Capture one frame of the given scene objects.

        Args:
            objects: Objects providing sample(spacing) -> (N, 3)

        Returns:
            (N, 3) raw cloud, may contain NaN rows
        """
        if not objects:
            return np.empty((0, 3))

        cloud = np.vstack([obj.sample(self.spacing) for obj in objects])

        keep = self.rng.random(len(cloud)) >= self.dropout_rate
        cloud = cloud[keep]

        cloud = cloud + self.rng.normal(0.0, self.noise_std, cloud.shape)
        cloud[:, 2] = cloud[:, 2] * self.depth_gain + self.depth_offset

        invalid = self.rng.random(len(cloud)) < self.nan_rate
        cloud[invalid] = np.nan
        return cloud
