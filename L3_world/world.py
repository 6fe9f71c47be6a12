# =============================================================================
# L3 World Model - World Model and Scenario Presets
# =============================================================================

import numpy as np
from typing import Dict, List, Optional

from .config import (
    WORLD_BOUNDS,
    DEFAULT_DT,
    FLOOR_EXTENT,
    WALL_X,
    WALL_Y_RANGE,
    WALL_HEIGHT,
    SCENARIO_STATIC_NUM_BOXES,
    SCENARIO_STATIC_X_RANGE,
    SCENARIO_STATIC_Y_RANGE,
    SCENARIO_MOVING_SPEED_RANGE,
    SCENARIO_SPLIT_BOX_SIZE,
    SCENARIO_SPLIT_GAP,
    SCENARIO_SPLIT_SPEED
)

from .obstacles import PlaneSurface, BoxObject, ObstacleGenerator
from .sensor import DepthSensorSimulator


class WorldModel:
    """
    Synthetic depth scene.
    Manages surfaces, boxes, the depth sensor and the simulation clock.
    """

    def __init__(self, dt: float = DEFAULT_DT,
                 world_bounds: tuple = WORLD_BOUNDS,
                 seed: Optional[int] = None,
                 sensor: Optional[DepthSensorSimulator] = None):
        """
        Initialize the simulation world.

        Args:
            dt: Delta time between frames
            world_bounds: Bounds for moving boxes (x_min, x_max, y_min, y_max)
            seed: Seed of the scene and sensor random generator
            sensor: Depth sensor (default simulator if None)
        """
        self.dt = dt
        self.world_bounds = world_bounds
        self.rng = np.random.default_rng(seed)
        self.sensor = sensor if sensor is not None else DepthSensorSimulator(rng=self.rng)

        self.surfaces: List[PlaneSurface] = []
        self.boxes: List[BoxObject] = []

        self.current_time = 0.0
        self.current_frame = 0

    def add_surface(self, surface: PlaneSurface):
        self.surfaces.append(surface)

    def add_box(self, box: BoxObject):
        self.boxes.append(box)

    def add_floor(self, extent=FLOOR_EXTENT):
        self.add_surface(PlaneSurface(2, 0.0, extent, name='floor'))

    def add_wall(self, x: float = WALL_X, y_range=WALL_Y_RANGE, height: float = WALL_HEIGHT):
        self.add_surface(PlaneSurface(0, x, (y_range[0], y_range[1], 0.0, height), name='wall'))

    def clear(self):
        self.surfaces.clear()
        self.boxes.clear()

    def reset(self):
        self.current_time = 0.0
        self.current_frame = 0

    def update(self) -> dict:
        """
        Advance the scene by one frame and capture a depth frame.

        Returns:
            Dict with 'cloud', 'time', 'frame' and 'ground_truth'
        """
        cloud = self.sensor.scan(self.surfaces + self.boxes)
        ground_truth = self.get_ground_truth()

        for box in self.boxes:
            box.step(self.dt, self.world_bounds)

        self.current_time += self.dt
        self.current_frame += 1

        return {
            'cloud': cloud,
            'time': self.current_time,
            'frame': self.current_frame,
            'ground_truth': ground_truth
        }

    def get_ground_truth(self) -> Dict[int, dict]:
        """Position and velocity of every box, keyed by scene index."""
        return {
            idx: {
                'name': box.name,
                'position': box.center.copy(),
                'velocity': box.velocity.copy(),
                'type': 'DYNAMIC' if box.dynamic else 'STATIC'
            }
            for idx, box in enumerate(self.boxes)
        }


class ScenarioPresets:
    """Presets for common test scenarios."""

    SCENARIOS = ('static', 'moving', 'split', 'mixed')

    @staticmethod
    def load(world: WorldModel, name: str) -> dict:
        """Load a scenario by name."""
        loaders = {
            'static': ScenarioPresets.scenario_static,
            'moving': ScenarioPresets.scenario_moving,
            'split': ScenarioPresets.scenario_split,
            'mixed': ScenarioPresets.scenario_mixed,
        }
        if name not in loaders:
            raise ValueError(f"Unknown scenario '{name}', expected one of {ScenarioPresets.SCENARIOS}")
        return loaders[name](world)

    @staticmethod
    def scenario_static(world: WorldModel):
        world.clear()
        world.add_floor()
        boxes = ObstacleGenerator.generate_random_boxes(
            num_boxes=SCENARIO_STATIC_NUM_BOXES,
            x_range=SCENARIO_STATIC_X_RANGE,
            y_range=SCENARIO_STATIC_Y_RANGE,
            rng=world.rng
        )
        for box in boxes:
            world.add_box(box)
        world.reset()
        return {'type': 'static', 'num_boxes': len(boxes)}

    @staticmethod
    def scenario_moving(world: WorldModel):
        world.clear()
        world.add_floor()

        speed = world.rng.uniform(*SCENARIO_MOVING_SPEED_RANGE)
        world.add_box(ObstacleGenerator.create_moving_box(
            position=np.array([0.8, -0.8]),
            velocity=np.array([speed, speed * 0.5]),
            name='moving0'
        ))
        speed = world.rng.uniform(*SCENARIO_MOVING_SPEED_RANGE)
        world.add_box(ObstacleGenerator.create_moving_box(
            position=np.array([2.8, 0.8]),
            velocity=np.array([-speed, 0.0]),
            name='moving1'
        ))
        world.reset()
        return {'type': 'moving', 'num_boxes': 2}

    @staticmethod
    def scenario_split(world: WorldModel):
        """Two small boxes side by side; one of them drifts away."""
        world.clear()
        world.add_floor()

        size = SCENARIO_SPLIT_BOX_SIZE
        x = 1.5
        world.add_box(ObstacleGenerator.create_moving_box(
            position=np.array([x, 0.0]), velocity=np.zeros(2),
            size=size, name='anchor'
        ))
        world.add_box(ObstacleGenerator.create_moving_box(
            position=np.array([x, size + SCENARIO_SPLIT_GAP]),
            velocity=np.array([0.0, SCENARIO_SPLIT_SPEED]),
            size=size, name='drifter'
        ))
        world.reset()
        return {'type': 'split', 'num_boxes': 2}

    @staticmethod
    def scenario_mixed(world: WorldModel):
        world.clear()
        world.add_floor()
        world.add_wall()

        boxes = ObstacleGenerator.generate_random_boxes(
            num_boxes=2,
            x_range=(0.8, 1.8),
            y_range=SCENARIO_STATIC_Y_RANGE,
            rng=world.rng
        )
        for box in boxes:
            world.add_box(box)

        speed = world.rng.uniform(*SCENARIO_MOVING_SPEED_RANGE)
        world.add_box(ObstacleGenerator.create_moving_box(
            position=np.array([2.6, -0.9]),
            velocity=np.array([0.0, speed]),
            name='moving0'
        ))
        world.reset()
        return {'type': 'mixed', 'num_boxes': len(boxes) + 1}
