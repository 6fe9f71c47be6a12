# =============================================================================
# PERCEPTION PIPELINE
# =============================================================================
# Wires the layers into one per-frame pipeline:
#
#   FrameSource -> FilteredFrameSource -> SurfaceDetector -> ObstacleDetector
#       -> [labeler] -> tracker
#
# Configuration is a tagged dataclass (one typed field per option) built
# from the per-package config modules. build_pipeline() reports failures
# through its result value instead of raising.
# =============================================================================

import logging
import time
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from L4_detection import (
    FrameData,
    FrameDataObserver,
    FrameSource,
    FilteredFrameSource,
    PointFilterChain,
    SensorCalibrationFilter,
    CropFilter,
    TruncateFilter,
    PoseTransformFilter,
    LatestValue,
    PassThroughAggregator,
    BitHistoryAggregator,
    Pt1Aggregator,
    SurfaceSegmenter,
    SurfaceDetector,
    EuclideanClusterer,
    ObstacleDetector
)
from L4_detection.config import (
    CALIBRATION_A,
    CALIBRATION_B,
    CROP_X_MAX,
    CROP_X_MIN,
    CROP_Y_MAX,
    CROP_Y_MIN,
    TRUNCATE_DECIMALS,
    VOXEL_RESOLUTION,
    BIT_HISTORY_THRESHOLD,
    PT1_THRESHOLD,
    SEGMENTER_MAX_ITERATIONS,
    SEGMENTER_DISTANCE_THRESHOLD,
    SEGMENTER_MIN_FILTER_PERCENTAGE,
    SEGMENTER_MIN_PLANE_FRACTION,
    SEGMENTER_ANGLE_TOLERANCE_DEG,
    SURFACE_CLUSTER_TOLERANCE,
    SURFACE_CLUSTER_MIN_SIZE,
    SURFACE_CLUSTER_MAX_SIZE,
    OBSTACLE_CLUSTER_TOLERANCE,
    OBSTACLE_CLUSTER_MIN_SIZE,
    OBSTACLE_CLUSTER_MAX_SIZE
)
from L5_tracking import (
    GMMObstacleTracker,
    KalmanObstacleTracker,
    ObstacleTrackerParams,
    TrackedObstacle
)

logger = logging.getLogger(__name__)

AGGREGATORS = ('bits', 'pt1', 'none')
TRACKERS = ('gmm', 'kalman', 'none')


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class FilterConfig:
    """Point-wise filters and temporal aggregation."""
    calibrate: bool = True
    calibration_a: float = CALIBRATION_A
    calibration_b: float = CALIBRATION_B
    crop: bool = True
    crop_x_max: float = CROP_X_MAX
    crop_x_min: float = CROP_X_MIN
    crop_y_max: float = CROP_Y_MAX
    crop_y_min: float = CROP_Y_MIN
    truncate: bool = True
    truncate_decimals: int = TRUNCATE_DECIMALS
    pose_transform: bool = False
    aggregator: str = 'bits'                # 'bits', 'pt1' or 'none'
    voxel_resolution: float = VOXEL_RESOLUTION
    larger_voxelization: bool = False
    bit_history_threshold: int = BIT_HISTORY_THRESHOLD
    pt1_threshold: float = PT1_THRESHOLD


@dataclass
class SegmenterConfig:
    """Plane extraction and surface clustering."""
    max_iterations: int = SEGMENTER_MAX_ITERATIONS
    distance_threshold: float = SEGMENTER_DISTANCE_THRESHOLD
    min_filter_percentage: float = SEGMENTER_MIN_FILTER_PERCENTAGE
    min_plane_fraction: float = SEGMENTER_MIN_PLANE_FRACTION
    angle_tolerance: float = SEGMENTER_ANGLE_TOLERANCE_DEG
    cluster_tolerance: float = SURFACE_CLUSTER_TOLERANCE
    cluster_min_size: int = SURFACE_CLUSTER_MIN_SIZE
    cluster_max_size: Optional[int] = SURFACE_CLUSTER_MAX_SIZE
    seed: Optional[int] = None


@dataclass
class DetectorConfig:
    """Obstacle clustering of the residual cloud."""
    cluster_tolerance: float = OBSTACLE_CLUSTER_TOLERANCE
    cluster_min_size: int = OBSTACLE_CLUSTER_MIN_SIZE
    cluster_max_size: Optional[int] = OBSTACLE_CLUSTER_MAX_SIZE


@dataclass
class TrackerConfig:
    """Tracker selection and tuning."""
    kind: str = 'gmm'                       # 'gmm', 'kalman' or 'none'
    params: ObstacleTrackerParams = field(default_factory=ObstacleTrackerParams)
    seed: Optional[int] = None


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""
    filters: FilterConfig = field(default_factory=FilterConfig)
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    def validate(self) -> List[str]:
        """
        Check the configuration.

        Returns:
            List of problems (empty if the configuration is usable)
        """
        problems = []
        f, s, d, t = self.filters, self.segmenter, self.detector, self.tracker

        if f.aggregator not in AGGREGATORS:
            problems.append(f"filters.aggregator must be one of {AGGREGATORS}, got '{f.aggregator}'")
        if f.voxel_resolution <= 0:
            problems.append("filters.voxel_resolution must be positive")
        if f.crop and (f.crop_x_min >= f.crop_x_max or f.crop_y_min >= f.crop_y_max):
            problems.append("filters crop window is empty")
        if f.truncate_decimals < 0:
            problems.append("filters.truncate_decimals must be non-negative")

        if s.max_iterations < 1:
            problems.append("segmenter.max_iterations must be at least 1")
        if s.distance_threshold <= 0:
            problems.append("segmenter.distance_threshold must be positive")
        if not 0.0 <= s.min_filter_percentage < 1.0:
            problems.append("segmenter.min_filter_percentage must be in [0, 1)")
        if not 0.0 <= s.min_plane_fraction <= 1.0:
            problems.append("segmenter.min_plane_fraction must be in [0, 1]")
        if not 0.0 < s.angle_tolerance < 90.0:
            problems.append("segmenter.angle_tolerance must be in (0, 90) degrees")
        if s.cluster_min_size < 1:
            problems.append("segmenter.cluster_min_size must be at least 1")
        if s.cluster_max_size is not None and s.cluster_max_size < s.cluster_min_size:
            problems.append("segmenter cluster size bounds are inverted")

        if d.cluster_tolerance <= 0:
            problems.append("detector.cluster_tolerance must be positive")
        if d.cluster_min_size < 1:
            problems.append("detector.cluster_min_size must be at least 1")
        if d.cluster_max_size is not None and d.cluster_max_size < d.cluster_min_size:
            problems.append("detector cluster size bounds are inverted")

        if t.kind not in TRACKERS:
            problems.append(f"tracker.kind must be one of {TRACKERS}, got '{t.kind}'")
        if t.params.mahalanobis_gate <= 0:
            problems.append("tracker.params.mahalanobis_gate must be positive")
        if t.params.track_timeout < 0:
            problems.append("tracker.params.track_timeout must be non-negative")
        if not 0.0 < t.params.weight_decay <= 1.0:
            problems.append("tracker.params.weight_decay must be in (0, 1]")
        if t.params.hyst_split_threshold < 1:
            problems.append("tracker.params.hyst_split_threshold must be at least 1")
        if t.params.split_reset_frames < 1:
            problems.append("tracker.params.split_reset_frames must be at least 1")
        if not 0.0 < t.params.split_min_fraction <= 0.5:
            problems.append("tracker.params.split_min_fraction must be in (0, 0.5]")
        if t.params.split_separation <= 0:
            problems.append("tracker.params.split_separation must be positive")
        if t.params.split_min_points < 2:
            problems.append("tracker.params.split_min_points must be at least 2")
        if t.params.split_sample_size < t.params.split_min_points:
            problems.append("tracker.params.split_sample_size must not be below split_min_points")
        if t.params.max_association_distance <= 0:
            problems.append("tracker.params.max_association_distance must be positive")

        return problems


# =============================================================================
# Pipeline
# =============================================================================

class PerceptionPipeline(FrameDataObserver):
    """
    Owns the frame source and the registration graph of all stages.

    Registered last on the surface detector, so `update_frame` runs after
    obstacle detection and tracking of the same frame have returned.
    """

    def __init__(self, source: FrameSource, filter_chain: PointFilterChain,
                 filtered_source: FilteredFrameSource,
                 surface_detector: SurfaceDetector,
                 obstacle_detector: ObstacleDetector,
                 tracker=None, labeler=None,
                 pose: Optional[LatestValue] = None):
        self.source = source
        self.filter_chain = filter_chain
        self.filtered_source = filtered_source
        self.surface_detector = surface_detector
        self.obstacle_detector = obstacle_detector
        self.tracker = tracker
        self.labeler = labeler
        self.pose = pose

        self.last_frame_data: Optional[FrameData] = None
        self.frames_processed = 0

        source.attach_observer(filtered_source)
        filtered_source.attach_observer(surface_detector)
        surface_detector.attach_observer(obstacle_detector)
        surface_detector.attach_observer(self)

        head = obstacle_detector
        if labeler is not None:
            head.attach_aggregator(labeler)
            head = labeler
        if tracker is not None:
            head.attach_observer(tracker)

    @property
    def aggregator(self):
        return self.filtered_source.aggregator

    def update_frame(self, frame_data: FrameData):
        self.last_frame_data = frame_data
        self.frames_processed += 1

    def process(self, points: np.ndarray,
                sensor_origin: Optional[np.ndarray] = None) -> FrameData:
        """
        Push one raw frame through every stage.

        Returns:
            FrameData of the frame
        """
        self.source.emit(points, sensor_origin)
        return self.last_frame_data

    @property
    def tracked(self) -> List[TrackedObstacle]:
        """Tracks published by the Gaussian mixture tracker on the last frame."""
        if isinstance(self.tracker, GMMObstacleTracker):
            return self.tracker.tracked
        return []

    def close(self):
        """Unregister every stage."""
        self.source.detach_observer(self.filtered_source)
        self.filtered_source.detach_observer(self.surface_detector)
        self.surface_detector.detach_observer(self.obstacle_detector)
        self.surface_detector.detach_observer(self)
        if self.labeler is not None:
            self.obstacle_detector.detach_observer(self.labeler)
            if self.tracker is not None:
                self.labeler.detach_observer(self.tracker)
        elif self.tracker is not None:
            self.obstacle_detector.detach_observer(self.tracker)
        if isinstance(self.tracker, GMMObstacleTracker):
            self.tracker.clear()


@dataclass
class PipelineBuildResult:
    """Outcome of build_pipeline."""
    ok: bool
    pipeline: Optional[PerceptionPipeline] = None
    error: Optional[str] = None


def build_filter_chain(config: FilterConfig,
                       pose: Optional[LatestValue] = None) -> PointFilterChain:
    chain = PointFilterChain()
    if config.calibrate:
        chain.add_filter(SensorCalibrationFilter(config.calibration_a, config.calibration_b))
    if config.pose_transform and pose is not None:
        chain.add_filter(PoseTransformFilter(pose))
    if config.crop:
        chain.add_filter(CropFilter(config.crop_x_max, config.crop_x_min,
                                    config.crop_y_max, config.crop_y_min))
    if config.truncate:
        chain.add_filter(TruncateFilter(config.truncate_decimals))
    return chain


def build_aggregator(config: FilterConfig):
    if config.aggregator == 'bits':
        return BitHistoryAggregator(resolution=config.voxel_resolution,
                                    larger_voxelization=config.larger_voxelization,
                                    threshold=config.bit_history_threshold)
    if config.aggregator == 'pt1':
        return Pt1Aggregator(resolution=config.voxel_resolution,
                             threshold=config.pt1_threshold)
    return PassThroughAggregator()


def build_tracker(config: TrackerConfig, clock: Callable[[], float]):
    p = config.params
    if config.kind == 'gmm':
        return GMMObstacleTracker(p, clock=clock, seed=config.seed)
    if config.kind == 'kalman':
        return KalmanObstacleTracker(p.noise_position, p.noise_velocity,
                                     p.noise_measurement, clock=clock)
    return None


def build_pipeline(config: Optional[PipelineConfig] = None,
                   source: Optional[FrameSource] = None,
                   approximator=None, labeler=None,
                   clock: Callable[[], float] = time.perf_counter) -> PipelineBuildResult:
    """
    Build and open a pipeline.

    Args:
        config: Pipeline configuration (defaults if None)
        source: Frame source (a plain FrameSource if None)
        approximator: Cluster shape approximator (bounding sphere if None)
        labeler: Optional stage between detector and tracker that assigns
                 ids to observations (needed by the Kalman tracker)
        clock: Time source for the tracker

    Returns:
        PipelineBuildResult; `pipeline` is set only when `ok` is True
    """
    config = config if config is not None else PipelineConfig()

    problems = config.validate()
    if problems:
        error = "; ".join(problems)
        logger.error("Invalid pipeline configuration: %s", error)
        return PipelineBuildResult(ok=False, error=error)

    if config.tracker.kind == 'kalman' and labeler is None:
        logger.warning("Kalman tracker without labeler: unlabeled observations are not tracked")

    source = source if source is not None else FrameSource()
    if not source.open():
        error = f"{type(source).__name__} failed to open"
        logger.error(error)
        return PipelineBuildResult(ok=False, error=error)

    pose = LatestValue() if config.filters.pose_transform else None
    chain = build_filter_chain(config.filters, pose)
    filtered_source = FilteredFrameSource(chain, build_aggregator(config.filters))

    s = config.segmenter
    segmenter = SurfaceSegmenter(
        max_iterations=s.max_iterations,
        distance_threshold=s.distance_threshold,
        min_filter_percentage=s.min_filter_percentage,
        min_plane_fraction=s.min_plane_fraction,
        angle_tolerance=s.angle_tolerance,
        cluster_tolerance=s.cluster_tolerance,
        cluster_min_size=s.cluster_min_size,
        cluster_max_size=s.cluster_max_size,
        seed=s.seed
    )
    d = config.detector
    clusterer = EuclideanClusterer(tolerance=d.cluster_tolerance,
                                   min_size=d.cluster_min_size,
                                   max_size=d.cluster_max_size)

    pipeline = PerceptionPipeline(
        source=source,
        filter_chain=chain,
        filtered_source=filtered_source,
        surface_detector=SurfaceDetector(segmenter),
        obstacle_detector=ObstacleDetector(approximator=approximator, segmenter=clusterer),
        tracker=build_tracker(config.tracker, clock),
        labeler=labeler,
        pose=pose
    )
    logger.info("Pipeline built: aggregator=%s, tracker=%s",
                config.filters.aggregator, config.tracker.kind)
    return PipelineBuildResult(ok=True, pipeline=pipeline)
