# =============================================================================
# L5 Tracking - Track Visualizer
# =============================================================================
# Top-down (XY) matplotlib view of the Gaussian mixture tracks.
# Every artist drawn for a track is registered in the track's vis_handles,
# so deleting the track removes its artists.
# =============================================================================

import numpy as np
from typing import Tuple

import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.collections import PatchCollection
from matplotlib.patches import Circle, Ellipse, FancyArrow, Polygon

from .gmm_state import TrackState
from .gmm_tracker import TrackObserver
from .types import ColorMode, ShapeKind, TrackVisualizerOptions


class TrackVisualizer(TrackObserver):
    """
    Draws Gaussians, shapes, trajectories and velocities of tracks.

    Attach with `tracker.attach_track_observer(visualizer)`.
    """

    def __init__(self, ax: Axes = None,
                 options: TrackVisualizerOptions = None):
        """
        Args:
            ax: Target axes (a new figure is created if None)
            options: Display options
        """
        if ax is None:
            _, ax = plt.subplots(figsize=(8, 8))
        self.ax = ax
        self.options = options if options is not None else TrackVisualizerOptions()
        self.cmap = plt.get_cmap('tab10')

    # =========================================================================
    # TrackObserver
    # =========================================================================

    def on_track_created(self, state: TrackState):
        self.draw_track(state)

    def on_track_updated(self, state: TrackState):
        self.draw_track(state)

    def on_track_deleted(self, state: TrackState):
        # The tracker releases vis_handles after this call
        pass

    # =========================================================================
    # Drawing
    # =========================================================================

    def track_color(self, state: TrackState) -> Tuple[float, float, float, float]:
        """RGBA color of a track according to the color mode."""
        mode = self.options.color_mode
        if mode == ColorMode.HARD_ASSIGNMENT:
            return tuple(self.cmap(state.id % self.cmap.N))
        if mode == ColorMode.SOFT_ASSIGNMENT:
            r, g, b, _ = self.cmap(state.id % self.cmap.N)
            return (r, g, b, float(np.clip(0.2 + 0.8 * state.weight, 0.2, 1.0)))
        return self.options.gaussian_color

    def draw_track(self, state: TrackState):
        """Redraw all artists of one track."""
        state.release_handles()
        opts = self.options
        color = self.track_color(state)
        position = state.position

        if opts.draw_gaussians and state.valid_obs_covar:
            state.vis_handles['gaussian'] = self.ax.add_patch(
                self._covariance_ellipse(position, state.obs_covar, color))

        if opts.draw_ssvs and state.ssv is not None:
            ssv_color = color if opts.color_mode != ColorMode.NONE else opts.ssv_color
            state.vis_handles['ssv'] = self.ax.add_collection(
                self._ssv_collection(state, ssv_color))

        if opts.draw_trajectories and len(state.trajectory) > 1:
            traj = np.array(state.trajectory)[-opts.trajectory_length:]
            line, = self.ax.plot(traj[:, 0], traj[:, 1], '-', color=color,
                                 linewidth=1.5, alpha=0.6)
            state.vis_handles['trajectory'] = line

        velocity = state.velocity
        if opts.draw_velocities and np.linalg.norm(velocity[:2]) > 1e-3:
            arrow = FancyArrow(position[0], position[1],
                               velocity[0] * opts.velocity_scale,
                               velocity[1] * opts.velocity_scale,
                               width=0.01, head_width=0.04, head_length=0.03,
                               fc=color, ec=color, alpha=0.8, zorder=9)
            state.vis_handles['velocity'] = self.ax.add_patch(arrow)

        state.vis_handles['label'] = self.ax.text(
            position[0], position[1], f'ID:{state.id}', ha='center', va='bottom',
            fontsize=7.5, zorder=12)

    def _covariance_ellipse(self, center: np.ndarray, cov: np.ndarray,
                            color) -> Ellipse:
        eigenvalues, eigenvectors = np.linalg.eigh(cov[:2, :2])
        eigenvalues = np.clip(eigenvalues, 0.0, None)
        angle = np.degrees(np.arctan2(eigenvectors[1, 1], eigenvectors[0, 1]))
        width, height = 2.0 * self.options.ellipse_sigma * np.sqrt(eigenvalues[::-1])
        return Ellipse((center[0], center[1]), width, height, angle=angle,
                       fc='none', ec=color, lw=1.5, zorder=6)

    def _ssv_collection(self, state: TrackState, color) -> PatchCollection:
        ssv = state.ssv
        a = ssv.point_a[:2]
        patches = [Circle(a, ssv.radius)]
        if ssv.kind == ShapeKind.CAPSULE:
            b = ssv.point_b[:2]
            patches.append(Circle(b, ssv.radius))
            direction = b - a
            length = np.linalg.norm(direction)
            if length > 1e-9:
                normal = np.array([-direction[1], direction[0]]) / length * ssv.radius
                patches.append(Polygon([a + normal, b + normal, b - normal, a - normal]))
        return PatchCollection(patches, facecolor=color, edgecolor=color,
                               alpha=0.25, zorder=5)

    def set_view(self, bounds: Tuple[float, float, float, float]):
        """Fix the axes limits to (x_min, x_max, y_min, y_max)."""
        self.ax.set_xlim(bounds[0], bounds[1])
        self.ax.set_ylim(bounds[2], bounds[3])
        self.ax.set_aspect('equal')
        self.ax.grid(True, alpha=0.25, linestyle='--')
        self.ax.set_xlabel('X (m)', fontsize=10, fontweight='bold')
        self.ax.set_ylabel('Y (m)', fontsize=10, fontweight='bold')
