# =============================================================================
# L3 World Model Package
# =============================================================================
# Synthetic world layer feeding the perception pipeline.
#
# Responsibilities:
# - Scene objects (floor, wall, static and moving boxes)
# - Depth sensor simulation (lattice sampling, noise, dropout, NaNs)
# - World state and ground truth
#
# Usage:
#   from L3_world import WorldModel, ScenarioPresets
#   world = WorldModel(seed=0)
#   ScenarioPresets.scenario_moving(world)
#   state = world.update()
# =============================================================================

from .sensor import DepthSensorSimulator
from .obstacles import PlaneSurface, BoxObject, ObstacleGenerator
from .world import WorldModel, ScenarioPresets

# Re-export config for convenience
from .config import (
    WORLD_BOUNDS,
    DEFAULT_DT,
    DEFAULT_SIMULATION_STEPS,
    GROUND_TRUTH_MATCH_DISTANCE
)

__all__ = [
    # Sensor
    'DepthSensorSimulator',

    # Scene objects
    'PlaneSurface',
    'BoxObject',
    'ObstacleGenerator',

    # World
    'WorldModel',
    'ScenarioPresets',

    # Config exports
    'WORLD_BOUNDS',
    'DEFAULT_DT',
    'DEFAULT_SIMULATION_STEPS',
    'GROUND_TRUTH_MATCH_DISTANCE',
]

__version__ = '2.0.0'
