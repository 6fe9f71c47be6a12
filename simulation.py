# =============================================================================
# PERCEPTION SIMULATION
# =============================================================================
# Drives a synthetic depth scene through the perception pipeline:
#   L3 world -> L4 filtering/segmentation/detection -> L5 tracking
# Logs one row per (frame, track) to CSV and summary metrics to JSON.
# =============================================================================

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from L3_world import (
    WorldModel,
    ScenarioPresets,
    DEFAULT_SIMULATION_STEPS,
    WORLD_BOUNDS,
    GROUND_TRUTH_MATCH_DISTANCE
)
from L4_detection import ObstacleAggregator, ObstacleObservation, Subject
from L5_tracking import GMMObstacleTracker
from perception_pipeline import PipelineConfig, build_pipeline

logger = logging.getLogger("simulation")


def match_ground_truth(position: np.ndarray, ground_truth: Dict[int, dict],
                       max_distance: float = GROUND_TRUTH_MATCH_DISTANCE) -> Optional[int]:
    """Index of the nearest ground truth object within max_distance (XY)."""
    best_id, best_dist = None, max_distance
    for gt_id, gt in ground_truth.items():
        dist = float(np.linalg.norm(gt['position'][:2] - position[:2]))
        if dist <= best_dist:
            best_id, best_dist = gt_id, dist
    return best_id


# =============================================================================
# Ground Truth Labeling
# =============================================================================
class GroundTruthLabeler(Subject, ObstacleAggregator):
    """
    Assigns scene object ids to observations by nearest ground truth.
    Stands in for upstream correspondence in front of the Kalman tracker.
    """

    def __init__(self, max_distance: float = GROUND_TRUTH_MATCH_DISTANCE):
        super().__init__()
        self.max_distance = max_distance
        self.ground_truth: Dict[int, dict] = {}

    def update_obstacles(self, obstacles: List[ObstacleObservation]):
        for obstacle in obstacles:
            obstacle.id = match_ground_truth(obstacle.center, self.ground_truth,
                                             self.max_distance)
        for aggregator in self.observers:
            aggregator.update_obstacles(obstacles)


# =============================================================================
# Tracking Metrics (for evaluation)
# =============================================================================
class TrackingMetrics:
    """Tracking quality metrics against the synthetic ground truth."""

    def __init__(self):
        self.appearance_times = {}   # gt id -> first time in the scene
        self.detection_times = {}    # gt id -> first time a track matched it
        self.velocity_estimates = []

    def record_ground_truth(self, gt_ids, current_time: float):
        for gt_id in gt_ids:
            self.appearance_times.setdefault(gt_id, current_time)

    def record_detection(self, gt_id: int, current_time: float):
        self.detection_times.setdefault(gt_id, current_time)

    def record_velocity(self, track_id: int, estimated: float,
                        actual: float, current_time: float):
        self.velocity_estimates.append({
            'time': current_time,
            'track_id': track_id,
            'estimated': estimated,
            'actual': actual,
            'error': abs(estimated - actual)
        })

    def compute_metrics(self, track_log: pd.DataFrame,
                        tracks_deleted: int = 0) -> dict:
        metrics = {}

        if not track_log.empty:
            lifetimes = track_log.groupby('track_id')['frame'].count()
            metrics['tracks'] = {
                'created': int(lifetimes.size),
                'deleted': int(tracks_deleted),
                'mean_lifetime_frames': float(lifetimes.mean()),
                'max_lifetime_frames': int(lifetimes.max())
            }
        else:
            metrics['tracks'] = {'created': 0, 'deleted': int(tracks_deleted)}

        latencies = [self.detection_times[gt_id] - appeared
                     for gt_id, appeared in self.appearance_times.items()
                     if gt_id in self.detection_times]
        if latencies:
            metrics['detection_latency'] = {
                'mean': float(np.mean(latencies)),
                'min': float(np.min(latencies)),
                'max': float(np.max(latencies)),
                'missed': len(self.appearance_times) - len(latencies)
            }

        if self.velocity_estimates:
            df = pd.DataFrame(self.velocity_estimates)
            metrics['velocity_estimation'] = {
                'mean_error': float(df['error'].mean()),
                'rmse': float(np.sqrt(np.mean(df['error'] ** 2))),
                'samples': int(len(df))
            }

        return metrics

    def export_to_json(self, filename: str, track_log: pd.DataFrame,
                       tracks_deleted: int = 0) -> dict:
        metrics = self.compute_metrics(track_log, tracks_deleted)
        output = {
            'timestamp': datetime.now().isoformat(),
            'metrics': metrics
        }
        with open(filename, 'w', encoding='utf-8') as f:
            json.dump(output, f, indent=2, ensure_ascii=False, default=str)
        return metrics


# =============================================================================
# Simulation Controller
# =============================================================================
class SimulationController:
    """
    Runs the world and the pipeline frame by frame and records tracks.
    """

    def __init__(self, scenario: str = 'moving', steps: int = DEFAULT_SIMULATION_STEPS,
                 tracker: str = 'gmm', aggregator: str = 'bits',
                 seed: Optional[int] = None):
        """
        Args:
            scenario: Scenario preset name
            steps: Number of frames
            tracker: 'gmm' or 'kalman'
            aggregator: 'bits', 'pt1' or 'none'
            seed: Seed for the world, the segmenter and the tracker
        """
        self.scenario = scenario
        self.steps = steps
        self.tracker_kind = tracker

        self.world = WorldModel(seed=seed)
        self.scenario_info = ScenarioPresets.load(self.world, scenario)

        config = PipelineConfig()
        config.filters.aggregator = aggregator
        config.segmenter.seed = seed
        config.tracker.kind = tracker
        config.tracker.seed = seed
        self.config = config

        self.labeler = GroundTruthLabeler() if tracker == 'kalman' else None
        # Tracker time follows simulated time
        self.build_result = build_pipeline(config, labeler=self.labeler,
                                           clock=lambda: self.world.current_time)
        self.pipeline = self.build_result.pipeline

        self.metrics = TrackingMetrics()
        self.track_log: List[dict] = []
        self.last_cloud = np.empty((0, 3))
        self.last_ground_truth: Dict[int, dict] = {}

    @property
    def ok(self) -> bool:
        return self.build_result.ok

    def step(self, frame: int) -> dict:
        """Advance the world one frame and run the pipeline on it."""
        world_state = self.world.update()
        ground_truth = world_state['ground_truth']
        current_time = world_state['time']
        if self.labeler is not None:
            self.labeler.ground_truth = ground_truth

        frame_data = self.pipeline.process(world_state['cloud'])
        self.last_cloud = frame_data.cloud if frame_data is not None else np.empty((0, 3))
        self.last_ground_truth = ground_truth

        self.metrics.record_ground_truth(ground_truth, current_time)
        for row in self._track_rows(frame, current_time, frame_data, ground_truth):
            self.track_log.append(row)
            if row['gt_id'] is not None:
                self.metrics.record_detection(row['gt_id'], current_time)
                self.metrics.record_velocity(row['track_id'], row['speed'],
                                             row['gt_speed'], current_time)

        return {
            'frame': frame,
            'time': current_time,
            'frame_data': frame_data,
            'ground_truth': ground_truth
        }

    def _track_rows(self, frame: int, current_time: float, frame_data,
                    ground_truth: Dict[int, dict]) -> List[dict]:
        if isinstance(self.pipeline.tracker, GMMObstacleTracker):
            tracks = [(t.id, t.position, t.velocity, t.life_time,
                       t.observation.num_points if t.observation is not None else 0)
                      for t in self.pipeline.tracked]
        elif frame_data is not None:
            tracks = [(o.id, o.center, o.velocity, None, o.num_points)
                      for o in frame_data.obstacles if o.id is not None]
        else:
            tracks = []

        rows = []
        for track_id, position, velocity, life_time, num_points in tracks:
            gt_id = match_ground_truth(position, ground_truth)
            gt_speed = (float(np.linalg.norm(ground_truth[gt_id]['velocity']))
                        if gt_id is not None else None)
            rows.append({
                "frame": frame,
                "time": current_time,
                "track_id": track_id,
                "x": position[0],
                "y": position[1],
                "z": position[2],
                "vx": velocity[0],
                "vy": velocity[1],
                "vz": velocity[2],
                "speed": float(np.linalg.norm(velocity)),
                "life_time": life_time,
                "num_points": num_points,
                "gt_id": gt_id,
                "gt_speed": gt_speed
            })
        return rows

    def run(self):
        for frame in range(self.steps):
            self.step(frame)

    def tracks_deleted(self) -> int:
        tracker = self.pipeline.tracker
        return tracker.deleted_count if isinstance(tracker, GMMObstacleTracker) else 0

    def save_logs(self, output_dir: str = "log") -> dict:
        """
        Save the track log (CSV) and metrics (JSON).

        Returns:
            Dict with the written paths and the metrics
        """
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        os.makedirs(output_dir, exist_ok=True)

        df = pd.DataFrame(self.track_log)
        csv_file = os.path.join(
            output_dir, f"track_log_{self.scenario}_{self.tracker_kind}_{timestamp}.csv")
        df.to_csv(csv_file, index=False, encoding='utf-8')
        logger.info("Track log saved: %s", csv_file)

        json_file = os.path.join(
            output_dir, f"tracking_metrics_{self.scenario}_{self.tracker_kind}_{timestamp}.json")
        metrics = self.metrics.export_to_json(json_file, df, self.tracks_deleted())
        logger.info("Metrics saved: %s", json_file)

        tracks = metrics['tracks']
        logger.info("Tracks created: %d | deleted: %d", tracks['created'], tracks['deleted'])
        if 'velocity_estimation' in metrics:
            logger.info("Speed RMSE: %.3f m/s", metrics['velocity_estimation']['rmse'])

        return {'csv': csv_file, 'json': json_file, 'metrics': metrics}


# =============================================================================
# Visualization
# =============================================================================
class SimulationVisualizer:
    """
    Top-down live view with matplotlib.
    """

    def __init__(self, controller: SimulationController):
        import matplotlib.pyplot as plt
        from L5_tracking.visualizer import TrackVisualizer

        self.controller = controller
        self.plt = plt
        self.fig, self.ax = plt.subplots(figsize=(10, 8))
        self.track_view = TrackVisualizer(self.ax)
        self.track_view.set_view(WORLD_BOUNDS)
        self.cloud_artist = self.ax.scatter([], [], s=1, c='gray', alpha=0.4)
        self.gt_artist, = self.ax.plot([], [], 'kx', markersize=8)

        tracker = controller.pipeline.tracker
        if isinstance(tracker, GMMObstacleTracker):
            tracker.attach_track_observer(self.track_view)

    def animate(self, frame: int):
        data = self.controller.step(frame)
        cloud = self.controller.last_cloud
        self.cloud_artist.set_offsets(cloud[:, :2] if len(cloud) else np.empty((0, 2)))

        gt = np.array([g['position'] for g in data['ground_truth'].values()]).reshape(-1, 3)
        self.gt_artist.set_data(gt[:, 0], gt[:, 1])

        self.ax.set_title(
            f'Perception Simulation | {self.controller.scenario} | Frame {frame} | '
            f'Time: {data["time"]:.2f}s | Tracks: {len(self.controller.pipeline.tracked)}',
            fontsize=10, fontweight='bold')
        return []

    def run(self):
        """Starts the animation."""
        import matplotlib.animation as animation
        self.ani = animation.FuncAnimation(
            self.fig, self.animate,
            frames=self.controller.steps,
            interval=33, repeat=False
        )
        self.plt.show()


# =============================================================================
# Argument Parser
# =============================================================================
def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='simulation.py',
        description="""
  DEPTH PERCEPTION SIMULATION - LAYERED ARCHITECTURE

  LAYERS:
    L3: World Model   - Synthetic floor, wall and boxes seen by a depth sensor
    L4: Detection     - Filters, temporal voxel aggregation, plane removal,
                        obstacle clustering
    L5: Tracking      - Per-id Kalman tracker or Gaussian mixture tracker

  SCENARIOS (--scenario):
    static   - Boxes resting on the floor
    moving   - Two boxes crossing the scene
    split    - Two adjacent boxes, one drifts away
    mixed    - Floor, wall, static and moving boxes
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  python simulation.py                                 # Moving boxes, GMM tracker
  python simulation.py --scenario split --frames 200   # Split lifecycle
  python simulation.py --tracker kalman --aggregator pt1
  python simulation.py --visualize --log-level DEBUG
"""
    )

    parser.add_argument('--scenario', type=str, choices=list(ScenarioPresets.SCENARIOS),
                        default='moving', help='Scenario preset (default: moving)')
    parser.add_argument('--frames', type=int, default=DEFAULT_SIMULATION_STEPS, metavar='N',
                        help=f'Number of frames (default: {DEFAULT_SIMULATION_STEPS})')
    parser.add_argument('--tracker', type=str, choices=['kalman', 'gmm'], default='gmm',
                        help='Tracker (default: gmm)')
    parser.add_argument('--aggregator', type=str, choices=['bits', 'pt1', 'none'],
                        default='bits', help='Temporal aggregation filter (default: bits)')
    parser.add_argument('--output', type=str, default='log', metavar='DIR',
                        help='Output directory for logs and metrics (default: log)')
    parser.add_argument('--visualize', action='store_true',
                        help='Show a live matplotlib view')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed (default: none)')

    return parser.parse_args(argv)


# =============================================================================
# Main Entry Point
# =============================================================================
def main(argv=None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s'
    )

    controller = SimulationController(
        scenario=args.scenario,
        steps=args.frames,
        tracker=args.tracker,
        aggregator=args.aggregator,
        seed=args.seed
    )
    if not controller.ok:
        logger.error("Pipeline could not be built: %s", controller.build_result.error)
        return 1

    logger.info("Scenario %s: %s", args.scenario, controller.scenario_info)

    if args.visualize:
        SimulationVisualizer(controller).run()
    else:
        controller.run()

    controller.save_logs(args.output)
    controller.pipeline.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
