# =============================================================================
# L4 Detection - Frame Sources and Observer Interfaces
# =============================================================================
# Push-based frame delivery:
#   FrameSource --Frame--> FilteredFrameSource --FrameData--> detectors
# Observers are non-owning registrations notified synchronously, in
# registration order.
# =============================================================================

import logging
import time
import numpy as np
from abc import ABC, abstractmethod
from typing import List, Optional

from .types import Frame, FrameData

logger = logging.getLogger(__name__)


# =============================================================================
# Observer Interfaces
# =============================================================================

class FrameObserver(ABC):
    """Receives raw frames from a FrameSource."""

    @abstractmethod
    def notify_new_frame(self, frame: Frame):
        pass


class FrameDataObserver(ABC):
    """Receives per-frame pipeline data."""

    @abstractmethod
    def update_frame(self, frame_data: FrameData):
        pass


class Subject:
    """Keeps an ordered list of observers."""

    def __init__(self):
        self._observers: list = []

    def attach_observer(self, observer):
        self._observers.append(observer)

    def detach_observer(self, observer):
        """Unregister an observer. Unknown observers are ignored."""
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def observers(self) -> list:
        """Snapshot of the observers; notify through it so callbacks may detach."""
        return list(self._observers)


# =============================================================================
# Frame Sources
# =============================================================================

def finite_points(points: np.ndarray) -> np.ndarray:
    """Drop points with any non-finite coordinate."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return points[np.isfinite(points).all(axis=1)]


class FrameSource(Subject):
    """
    Base frame source.

    Concrete sources call `emit` for each new frame; the core never polls.
    """

    def __init__(self):
        super().__init__()
        self.next_seq = 0
        self.is_open = False

    def open(self) -> bool:
        """
        Start the source.

        Returns:
            True if the source is ready to emit frames
        """
        self.is_open = True
        logger.info("%s opened", type(self).__name__)
        return True

    def emit(self, points: np.ndarray,
             sensor_origin: Optional[np.ndarray] = None) -> Frame:
        """
        Push a new frame to all observers.

        Args:
            points: (N, 3) array, may contain non-finite points
            sensor_origin: Optional sensor origin

        Returns:
            The emitted Frame
        """
        frame = Frame(seq=self.next_seq,
                      points=finite_points(points),
                      sensor_origin=sensor_origin)
        self.next_seq += 1
        for observer in self.observers:
            observer.notify_new_frame(frame)
        return frame


class ReplayFrameSource(FrameSource):
    """Emits a fixed list of clouds, one per `step` call."""

    def __init__(self, clouds: List[np.ndarray]):
        super().__init__()
        self.clouds = list(clouds)
        self._cursor = 0

    def open(self) -> bool:
        if not self.clouds:
            logger.error("ReplayFrameSource has no clouds to replay")
            return False
        return super().open()

    def step(self) -> Optional[Frame]:
        """Emit the next cloud, or None when exhausted."""
        if self._cursor >= len(self.clouds):
            return None
        cloud = self.clouds[self._cursor]
        self._cursor += 1
        return self.emit(cloud)


class FilteredFrameSource(Subject, FrameObserver):
    """
    Filters every frame of a wrapped source.

    Pipeline:
    1. Reset the point-wise filters for the new frame
    2. Run the filter chain over the finite points
    3. Let the temporal aggregator materialize the filtered cloud
    4. Notify FrameDataObservers
    """

    def __init__(self, filter_chain, aggregator):
        """
        Args:
            filter_chain: PointFilterChain applied to each point
            aggregator: Cloud-level aggregator (begin_frame/add_points/get_filtered)
        """
        super().__init__()
        self.filter_chain = filter_chain
        self.aggregator = aggregator

    def notify_new_frame(self, frame: Frame):
        t0 = time.perf_counter()

        self.filter_chain.prepare_next()
        self.aggregator.begin_frame()

        points = self.filter_chain.apply(frame.points)
        self.aggregator.add_points(points)
        filtered = self.aggregator.get_filtered()

        logger.debug("Frame %d: %d -> %d points in %.1f ms",
                     frame.seq, len(frame.points), len(filtered),
                     (time.perf_counter() - t0) * 1000.0)

        frame_data = FrameData(frame_num=frame.seq, cloud=filtered,
                               sensor_origin=frame.sensor_origin)
        for observer in self.observers:
            observer.update_frame(frame_data)
