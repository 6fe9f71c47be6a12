# =============================================================================
# L5 Tracking - Configuration
# =============================================================================
# All configurable parameters for the obstacle tracking layer.
# =============================================================================

# =============================================================================
# KALMAN FILTER CONFIGURATION
# =============================================================================
# Assumed time between frames before a second frame was seen (seconds)
KALMAN_INITIAL_DT = 1.0 / 30.0

# Process noise for position and velocity (variances, diagonal of Q)
KALMAN_SYSTEM_NOISE_POSITION = 0.01
KALMAN_SYSTEM_NOISE_VELOCITY = 0.15

# Measurement noise (variance, diagonal of R)
KALMAN_MEASUREMENT_NOISE = 0.10

# Initial state covariance (diagonal)
KALMAN_INITIAL_COVARIANCE = 1.0

# Estimate the initial velocity from the first two measurements instead of
# starting at zero and letting the updates converge. Measurement jitter goes
# straight into the seeded velocity.
KALMAN_SEED_VELOCITY = False

# =============================================================================
# GAUSSIAN MIXTURE TRACKER CONFIGURATION
# =============================================================================
# Mahalanobis distance gate for density-based association
GMM_MAHALANOBIS_GATE = 3.0

# Nearest-centroid association radius for tracks without valid covariance
GMM_MAX_ASSOCIATION_DISTANCE = 0.5

# Frames a track may go unmatched before deletion
GMM_TRACK_TIMEOUT = 15

# Mixture weight decay per unmatched frame
GMM_WEIGHT_DECAY = 0.9

# --- Split / merge lifecycle ---
# Consecutive qualifying frames before a track splits
GMM_HYST_SPLIT_THRESHOLD = 3

# Consecutive non-split frames after which split bookkeeping is reset
GMM_SPLIT_RESET_FRAMES = 5

# Minimum fraction of cluster points in each sub-cluster
GMM_SPLIT_MIN_FRACTION = 0.2

# Required gap between sub-cluster means, in units of summed spread.
# The 2-means halves of one hollow box reach about 2.1.
GMM_SPLIT_SEPARATION = 3.0

# Minimum cluster size for a split test
GMM_SPLIT_MIN_POINTS = 20

# Points used for the split test (random subsample above this)
GMM_SPLIT_SAMPLE_SIZE = 500

# =============================================================================
# SHAPE FIT CONFIGURATION
# =============================================================================
# Fit capsules with end points pulled in by the radius
SSV_TIGHT_FIT = True

# Move fitted shapes with the Kalman-filtered position
SSV_FILTER_POSITIONS = False

# =============================================================================
# VISUALIZATION CONFIGURATION
# =============================================================================
# Number of past positions kept per track for trajectory drawing
TRAJECTORY_LENGTH = 128
