# =============================================================================
# L4 Detection - Configuration
# =============================================================================
# All configurable parameters for the filtering, segmentation and detection
# layer. Distances are in meters unless noted otherwise.
# =============================================================================

# =============================================================================
# FRAME SOURCE CONFIGURATION
# =============================================================================
# Nominal frame rate of the depth sensor (Hz)
FRAME_RATE_HZ = 30.0

# =============================================================================
# POINT-WISE FILTER CONFIGURATION
# =============================================================================
# Linear depth calibration: z' = a * z + b
CALIBRATION_A = 1.0117
CALIBRATION_B = -0.0100851

# Crop window in the robot frame (meters)
CROP_X_MAX = 4.0
CROP_X_MIN = -1.0
CROP_Y_MAX = 1.5
CROP_Y_MIN = -1.5

# Number of decimals kept by the truncation filter
TRUNCATE_DECIMALS = 2

# =============================================================================
# TEMPORAL AGGREGATION CONFIGURATION
# =============================================================================
# Voxel grid resolution (meters per grid unit)
VOXEL_RESOLUTION = 0.01

# --- Bit-history variant ---
# Width of the per-voxel history word (frames)
BIT_HISTORY_WIDTH = 32

# Minimum number of set bits for a voxel to be emitted
BIT_HISTORY_THRESHOLD = 10

# Margin added to the current frame bounding box before eviction (grid units)
BIT_HISTORY_EVICTION_MARGIN = 10

# --- PT1 variant ---
# Fraction of the previous value retained each frame
PT1_RETAIN_FACTOR = 0.9

# Value the scalar is pulled toward while a voxel is observed
PT1_TARGET = 10.0

# Emission threshold
PT1_THRESHOLD = 4.0

# Voxels decayed below this value are dropped from the map
PT1_PRUNE_BELOW = 1e-3

# =============================================================================
# SURFACE SEGMENTER CONFIGURATION
# =============================================================================
# RANSAC iteration cap
SEGMENTER_MAX_ITERATIONS = 200

# RANSAC inlier distance tolerance (meters)
SEGMENTER_DISTANCE_THRESHOLD = 0.02

# Stop extracting planes once fewer than this fraction of points remain
SEGMENTER_MIN_FILTER_PERCENTAGE = 0.1

# A plane must be supported by at least this fraction of the input cloud
SEGMENTER_MIN_PLANE_FRACTION = 0.1

# Normals closer than this angle (or its complement) share a surface group
SEGMENTER_ANGLE_TOLERANCE_DEG = 3.0

# --- Surface clustering ---
SURFACE_CLUSTER_TOLERANCE = 0.03
SURFACE_CLUSTER_MIN_SIZE = 2300
SURFACE_CLUSTER_MAX_SIZE = None   # None = size of the surface group

# =============================================================================
# OBSTACLE CLUSTERING CONFIGURATION
# =============================================================================
# Maximum distance between neighbouring points of one obstacle (meters)
OBSTACLE_CLUSTER_TOLERANCE = 0.05

# Cluster size bounds (points)
OBSTACLE_CLUSTER_MIN_SIZE = 100
OBSTACLE_CLUSTER_MAX_SIZE = 25000
