# =============================================================================
# L4 Detection - Temporal Aggregation Filters
# =============================================================================
# Voxel-indexed per-point history across frames. Decides which points are
# persistent structure and which are transient sensor noise.
#
# Each aggregator follows the same per-frame protocol:
#   begin_frame() -> add_points(points) -> get_filtered()
# =============================================================================

import numpy as np
from typing import Dict, Iterable, Set

from .types import VoxelKey

from .config import (
    VOXEL_RESOLUTION,
    BIT_HISTORY_WIDTH,
    BIT_HISTORY_THRESHOLD,
    BIT_HISTORY_EVICTION_MARGIN,
    PT1_RETAIN_FACTOR,
    PT1_TARGET,
    PT1_THRESHOLD,
    PT1_PRUNE_BELOW
)


def voxel_keys(points: np.ndarray, resolution: float = VOXEL_RESOLUTION,
               larger_voxelization: bool = False) -> np.ndarray:
    """
    Quantize points to integer grid cells.

    Coordinates are scaled and truncated toward zero. With
    `larger_voxelization` the lowest bit of each component is cleared,
    doubling the cell size.

    Args:
        points: (N, 3) array
        resolution: Grid resolution in meters

    Returns:
        (N, 3) int64 array of keys
    """
    keys = np.trunc(np.asarray(points, dtype=np.float64) / resolution).astype(np.int64)
    if larger_voxelization:
        keys &= ~1
    return keys


def unique_keys(keys: np.ndarray) -> Set[VoxelKey]:
    """Set of distinct voxel keys as int triples."""
    if len(keys) == 0:
        return set()
    return set(map(tuple, np.unique(keys, axis=0).tolist()))


def keys_to_points(keys: Iterable[VoxelKey], resolution: float) -> np.ndarray:
    """Grid point of each voxel key."""
    keys = list(keys)
    if not keys:
        return np.empty((0, 3))
    return np.array(keys, dtype=np.float64) * resolution


class PassThroughAggregator:
    """Emits the points of the current frame unchanged."""

    def __init__(self):
        self._points = []

    def begin_frame(self):
        self._points = []

    def add_points(self, points: np.ndarray):
        self._points.append(np.asarray(points, dtype=np.float64).reshape(-1, 3))

    def get_filtered(self) -> np.ndarray:
        if not self._points:
            return np.empty((0, 3))
        return np.vstack(self._points)


class BitHistoryAggregator:
    """
    Probabilistic voxel filter.

    A voxel is emitted if it was observed in at least `threshold` of the
    last `width` frames. Voxels outside the current frame's bounding box
    (grown by `margin` grid units) are evicted so the map stays bounded.
    """

    def __init__(self, resolution: float = VOXEL_RESOLUTION,
                 larger_voxelization: bool = False,
                 width: int = BIT_HISTORY_WIDTH,
                 threshold: int = BIT_HISTORY_THRESHOLD,
                 margin: int = BIT_HISTORY_EVICTION_MARGIN):
        self.resolution = resolution
        self.larger_voxelization = larger_voxelization
        self.width = width
        self.threshold = threshold
        self.margin = margin
        self._mask = (1 << width) - 1

        self.history: Dict[VoxelKey, int] = {}
        self._this_frame: Set[VoxelKey] = set()
        self._min_key = None
        self._max_key = None

    def begin_frame(self):
        self._this_frame = set()
        self._min_key = None
        self._max_key = None

    def add_points(self, points: np.ndarray):
        keys = voxel_keys(points, self.resolution, self.larger_voxelization)
        if len(keys) == 0:
            return
        self._this_frame |= unique_keys(keys)

        # Bounding box of the voxels observed in this frame
        lo, hi = keys.min(axis=0), keys.max(axis=0)
        self._min_key = lo if self._min_key is None else np.minimum(self._min_key, lo)
        self._max_key = hi if self._max_key is None else np.maximum(self._max_key, hi)

    def get_filtered(self) -> np.ndarray:
        for key in self._this_frame:
            self.history[key] = ((self.history.get(key, 0) << 1) | 1) & self._mask

        emitted = []
        for key, word in self.history.items():
            if key not in self._this_frame:
                word = (word << 1) & self._mask
                self.history[key] = word
            if bin(word).count("1") >= self.threshold:
                emitted.append(key)

        self._evict()
        return keys_to_points(emitted, self.resolution)

    def _evict(self):
        if self._min_key is None:
            self.history.clear()
            return

        # The box is grown exactly once per frame
        lo = self._min_key - self.margin
        hi = self._max_key + self.margin
        stale = [key for key, word in self.history.items()
                 if word == 0 or
                 not (lo[0] <= key[0] <= hi[0] and
                      lo[1] <= key[1] <= hi[1] and
                      lo[2] <= key[2] <= hi[2])]
        for key in stale:
            del self.history[key]

    def popcount(self, key: VoxelKey) -> int:
        return bin(self.history.get(key, 0)).count("1")


class Pt1Aggregator:
    """
    First-order low-pass (PT1) voxel filter.

    Observed voxels are blended toward `target`, unobserved ones decay
    toward zero with the same factor. A voxel is emitted once its value
    reaches `threshold`.
    """

    def __init__(self, resolution: float = VOXEL_RESOLUTION,
                 retain: float = PT1_RETAIN_FACTOR,
                 target: float = PT1_TARGET,
                 threshold: float = PT1_THRESHOLD,
                 prune_below: float = PT1_PRUNE_BELOW):
        self.resolution = resolution
        self.retain = retain
        self.target = target
        self.threshold = threshold
        self.prune_below = prune_below

        self.values: Dict[VoxelKey, float] = {}
        self._this_frame: Set[VoxelKey] = set()

    def begin_frame(self):
        self._this_frame = set()

    def add_points(self, points: np.ndarray):
        self._this_frame |= unique_keys(voxel_keys(points, self.resolution))

    def get_filtered(self) -> np.ndarray:
        blend = 1.0 - self.retain
        for key in self._this_frame:
            self.values[key] = self.retain * self.values.get(key, 0.0) + blend * self.target

        emitted = []
        pruned = []
        for key, value in self.values.items():
            if key not in self._this_frame:
                value = self.retain * value
                self.values[key] = value
            if value >= self.threshold:
                emitted.append(key)
            elif value < self.prune_below:
                pruned.append(key)

        for key in pruned:
            del self.values[key]
        return keys_to_points(emitted, self.resolution)
