# =============================================================================
# L3 World Model - Configuration
# =============================================================================
# All configurable parameters for the synthetic depth scene.
# =============================================================================

# =============================================================================
# SIMULATION WORLD BOUNDARIES
# =============================================================================
# Area in which moving objects bounce, in the robot frame.
# Format: (x_min, x_max, y_min, y_max) in meters
WORLD_BOUNDS = (0.0, 3.5, -1.3, 1.3)

# =============================================================================
# TIME PARAMETERS
# =============================================================================
# Delta time between frames (seconds)
# 1/30 s = 30 Hz depth camera
DEFAULT_DT = 1.0 / 30.0

# Total number of simulation steps
# With dt=1/30, 300 steps = 10 seconds of simulation
DEFAULT_SIMULATION_STEPS = 300

# =============================================================================
# DEPTH SENSOR CONFIGURATION
# =============================================================================
# Spacing of the sampling lattice on object surfaces (meters)
SENSOR_SAMPLE_SPACING = 0.02

# Gaussian noise standard deviation (meters)
SENSOR_NOISE_STD = 0.002

# Fraction of points lost per frame
SENSOR_DROPOUT_RATE = 0.05

# Fraction of points reported as NaN
SENSOR_NAN_RATE = 0.01

# Raw depth distortion z_raw = gain * z + offset.
# Inverse of the default calibration filter in L4_detection.
SENSOR_DEPTH_GAIN = 1.0 / 1.0117
SENSOR_DEPTH_OFFSET = 0.0100851 / 1.0117

# =============================================================================
# SCENE CONFIGURATION
# =============================================================================
# Floor rectangle (x_min, x_max, y_min, y_max) at z = 0
FLOOR_EXTENT = (-0.5, 3.8, -1.4, 1.4)

# Default box edge length (meters)
BOX_SIZE = 0.3

# Wall: x position, y extent and height (meters)
WALL_X = 3.6
WALL_Y_RANGE = (-1.4, 1.4)
WALL_HEIGHT = 1.0

# =============================================================================
# SCENARIO CONFIGURATION
# =============================================================================

# --- Static: boxes resting on the floor ---
SCENARIO_STATIC_NUM_BOXES = 3
SCENARIO_STATIC_X_RANGE = (0.8, 3.0)
SCENARIO_STATIC_Y_RANGE = (-1.0, 1.0)
SCENARIO_MIN_BOX_DISTANCE = 0.7

# --- Moving: boxes crossing the scene ---
SCENARIO_MOVING_SPEED_RANGE = (0.2, 0.5)

# --- Split: two small boxes side by side that drift apart ---
SCENARIO_SPLIT_BOX_SIZE = 0.12
SCENARIO_SPLIT_GAP = 0.03
SCENARIO_SPLIT_SPEED = 0.2

# =============================================================================
# GROUND TRUTH
# =============================================================================
# Maximum distance to associate a track with a ground truth object (meters)
GROUND_TRUTH_MATCH_DISTANCE = 0.3
