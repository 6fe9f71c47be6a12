# =============================================================================
# L4 Detection - Surface and Obstacle Detectors
# =============================================================================
# Frame-level orchestration:
#   FilteredFrameSource -> SurfaceDetector -> ObstacleDetector -> aggregators
# =============================================================================

import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from .types import FrameData, ObstacleObservation
from .source import Subject, FrameDataObserver
from .surface import SurfaceSegmenter
from .clustering import EuclideanClusterer
from .approximator import ObjectApproximator, BoundingSphereApproximator

logger = logging.getLogger(__name__)


class ObstacleAggregator(ABC):
    """Receives the obstacle list of every frame."""

    @abstractmethod
    def update_obstacles(self, obstacles: List[ObstacleObservation]):
        pass


class SurfaceDetector(Subject, FrameDataObserver):
    """
    Runs the SurfaceSegmenter on every frame and forwards the frame data
    with surfaces and residual cloud filled in.
    """

    def __init__(self, segmenter: Optional[SurfaceSegmenter] = None):
        super().__init__()
        self.segmenter = segmenter if segmenter is not None else SurfaceSegmenter()

    def update_frame(self, frame_data: FrameData):
        t0 = time.perf_counter()
        result = self.segmenter.segment(frame_data.cloud)
        frame_data.cloud_minus_surfaces = result.cloud_minus_surfaces
        frame_data.surfaces = result.surfaces
        frame_data.plane_coefficients = result.coefficients
        logger.debug("Surface detection took %.1f ms",
                     (time.perf_counter() - t0) * 1000.0)

        for observer in self.observers:
            observer.update_frame(frame_data)


class ObstacleDetector(Subject, FrameDataObserver):
    """
    Detects obstacles in the residual (non-surface) cloud.

    The residual is split into clusters by a pluggable segmentation
    strategy and each cluster is approximated by a pluggable approximator.
    A failure in either step drops the obstacles of that frame only.
    """

    def __init__(self,
                 approximator: Optional[ObjectApproximator] = None,
                 segmenter=None):
        """
        Args:
            approximator: Object with approximate(points) -> ObjectModel
            segmenter: Object with segment(cloud) -> list of point arrays
        """
        super().__init__()
        self.approximator = approximator if approximator is not None else BoundingSphereApproximator()
        self.segmenter = segmenter if segmenter is not None else EuclideanClusterer()
        self.failed_frames = 0

    def attach_aggregator(self, aggregator: ObstacleAggregator):
        self.attach_observer(aggregator)

    def detect(self, cloud) -> List[ObstacleObservation]:
        """Cluster and approximate; exceptions propagate."""
        clusters = self.segmenter.segment(cloud)
        return [ObstacleObservation.from_points(c, self.approximator.approximate(c))
                for c in clusters]

    def update_frame(self, frame_data: FrameData):
        cloud = frame_data.cloud_minus_surfaces
        if cloud is None:
            cloud = frame_data.cloud

        t0 = time.perf_counter()
        try:
            obstacles = self.detect(cloud)
        except Exception:
            logger.exception("Obstacle detection failed on frame %d",
                             frame_data.frame_num)
            self.failed_frames += 1
            obstacles = []
        logger.debug("Frame %d: %d obstacles in %.1f ms", frame_data.frame_num,
                     len(obstacles), (time.perf_counter() - t0) * 1000.0)

        frame_data.obstacles = obstacles
        self.notify_obstacles(obstacles)

    def notify_obstacles(self, obstacles: List[ObstacleObservation]):
        for aggregator in self.observers:
            aggregator.update_obstacles(obstacles)
