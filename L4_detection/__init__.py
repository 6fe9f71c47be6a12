# =============================================================================
# L4 Detection Package
# =============================================================================
# Depth-frame filtering, surface segmentation and obstacle detection layer.
#
# Responsibilities:
# - Frame sources and push-based observer interfaces
# - Point-wise filter chain and temporal voxel aggregation
# - Plane extraction, surface classification and clustering
# - Obstacle clustering and shape approximation
#
# Usage:
#   from L4_detection import FrameSource, FilteredFrameSource, ObstacleDetector
#   filtered = FilteredFrameSource(PointFilterChain(), BitHistoryAggregator())
#   source.attach_observer(filtered)
# =============================================================================

# Types
from .types import (
    VoxelKey,
    Frame,
    FrameData,
    PlaneCoefficients,
    ObjectModel,
    ObstacleObservation
)

# Frame sources
from .source import (
    FrameObserver,
    FrameDataObserver,
    Subject,
    FrameSource,
    ReplayFrameSource,
    FilteredFrameSource,
    finite_points
)

# Point-wise filters
from .transforms import (
    Pose,
    LatestValue,
    rotation_matrix_3d,
    transform_to_world_frame
)
from .filters import (
    PointFilter,
    SensorCalibrationFilter,
    CropFilter,
    TruncateFilter,
    PoseTransformFilter,
    PointFilterChain
)

# Temporal aggregation
from .temporal import (
    voxel_keys,
    PassThroughAggregator,
    BitHistoryAggregator,
    Pt1Aggregator
)

# Segmentation and detection
from .clustering import EuclideanClusterer
from .surface import (
    fit_plane_ransac,
    plane_angle,
    classify_plane,
    SurfaceGroup,
    SegmentationResult,
    SurfaceSegmenter
)
from .approximator import ObjectApproximator, BoundingSphereApproximator
from .detector import ObstacleAggregator, SurfaceDetector, ObstacleDetector

__all__ = [
    # Types
    'VoxelKey',
    'Frame',
    'FrameData',
    'PlaneCoefficients',
    'ObjectModel',
    'ObstacleObservation',

    # Sources
    'FrameObserver',
    'FrameDataObserver',
    'Subject',
    'FrameSource',
    'ReplayFrameSource',
    'FilteredFrameSource',
    'finite_points',

    # Transforms
    'Pose',
    'LatestValue',
    'rotation_matrix_3d',
    'transform_to_world_frame',

    # Filters
    'PointFilter',
    'SensorCalibrationFilter',
    'CropFilter',
    'TruncateFilter',
    'PoseTransformFilter',
    'PointFilterChain',

    # Aggregation
    'voxel_keys',
    'PassThroughAggregator',
    'BitHistoryAggregator',
    'Pt1Aggregator',

    # Segmentation
    'EuclideanClusterer',
    'fit_plane_ransac',
    'plane_angle',
    'classify_plane',
    'SurfaceGroup',
    'SegmentationResult',
    'SurfaceSegmenter',

    # Detection
    'ObjectApproximator',
    'BoundingSphereApproximator',
    'ObstacleAggregator',
    'SurfaceDetector',
    'ObstacleDetector',
]

__version__ = '2.0.0'
