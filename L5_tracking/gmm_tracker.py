# =============================================================================
# L5 Tracking - Gaussian Mixture Obstacle Tracker
# =============================================================================
# Maintains stable obstacle identities across frames:
# - Hungarian assignment on Gaussian log-densities (gated)
# - Nearest-centroid fallback for tracks without a valid covariance
# - Soft responsibilities and mixture weights
# - Split (2-means with hysteresis), merge and timeout lifecycle
# - Clusters still seen as one are shared between the tracks they split into
# - Swept sphere volume fit per update
# =============================================================================

import logging
import time
import numpy as np
from abc import ABC
from typing import Callable, Dict, List, Optional, Set, Tuple

from scipy.optimize import linear_sum_assignment
from scipy.special import logsumexp
from sklearn.cluster import KMeans

from L4_detection import ObstacleAggregator, ObstacleObservation, Subject

from .gmm_state import TrackState
from .kalman_tracker import FrameTimer
from .ssv import fit_ssv
from .types import ObstacleTrackerParams, TrackedObstacle

logger = logging.getLogger(__name__)

# Cost of a gated (forbidden) pair in the assignment matrix
_GATED_COST = 1e9


class TrackObserver(ABC):
    """
    Receives track lifecycle events.

    All methods are optional; the default implementations do nothing.
    """

    def on_track_created(self, state: TrackState):
        pass

    def on_track_updated(self, state: TrackState):
        pass

    def on_track_deleted(self, state: TrackState):
        pass


class GMMObstacleTracker(Subject, ObstacleAggregator):
    """
    Multi-object tracker over a mixture of Gaussian track states.

    Each frame:
    1. Predict every track by the elapsed time
    2. Hard-assign observations (split siblings share a joint cluster,
       then Hungarian + nearest-centroid fallback)
    3. Update responsibilities and mixture weights
    4. Test matched clusters for a split
    5. Update matched tracks (Kalman, covariance, shape)
    6. Merge unmatched tracks into matched neighbours
    7. Decay and time out unmatched tracks
    8. Create tracks for unassigned observations
    9. Age tracks and publish

    Output: List of TrackedObstacle, one per surviving track.
    """

    def __init__(self, params: Optional[ObstacleTrackerParams] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 seed: Optional[int] = None):
        """
        Args:
            params: Tracker tuning (defaults from config)
            clock: Time source in seconds
            seed: Seed for split-test subsampling and 2-means
        """
        super().__init__()
        self.params = params if params is not None else ObstacleTrackerParams()
        self.timer = FrameTimer(clock)
        self.seed = seed
        self.rng = np.random.default_rng(seed)

        self.tracks: Dict[int, TrackState] = {}
        self.next_id = 0
        self.frame_count = 0

        self._track_observers: List[TrackObserver] = []

        # Last frame's soft assignment: track id -> responsibility per observation
        # (a cluster shared by split siblings counts once per part)
        self.responsibilities: Dict[int, np.ndarray] = {}
        # Last frame's hard assignment: observation index -> track id
        self.assignment: Dict[int, int] = {}
        # Last frame's output
        self.tracked: List[TrackedObstacle] = []

        # Lifecycle statistics
        self.created_count = 0
        self.deleted_count = 0
        self.split_count = 0
        self.merge_count = 0

    # =========================================================================
    # Observers
    # =========================================================================

    def attach_track_observer(self, observer: TrackObserver):
        self._track_observers.append(observer)

    def detach_track_observer(self, observer: TrackObserver):
        if observer in self._track_observers:
            self._track_observers.remove(observer)

    def update_obstacles(self, obstacles: List[ObstacleObservation]):
        self.update(obstacles)
        for aggregator in self.observers:
            aggregator.update_obstacles(obstacles)

    # =========================================================================
    # Frame Update
    # =========================================================================

    def update(self, observations: List[ObstacleObservation]) -> List[TrackedObstacle]:
        """
        Process one frame of observations.

        Observations are annotated in place with the id, filtered center
        and velocity of the track they were assigned to.

        Args:
            observations: This frame's unlabeled obstacle clusters

        Returns:
            List of TrackedObstacle for all tracks alive after this frame
        """
        p = self.params
        self.frame_count += 1
        dt = self.timer.tick()

        # 1. Predict
        for state in self.tracks.values():
            state.kalman_filter.predict(dt, p.noise_position, p.noise_velocity)

        # 2. Hard assignment, sibling pairs first
        divided = self._divide_between_siblings(observations)
        paired = {track_id for parts in divided.values() for track_id, _ in parts}
        assignment = self._associate(observations, set(divided), paired)

        matches = [(track_id, observations[j]) for j, track_id in assignment.items()]
        for j, parts in divided.items():
            matches.extend(parts)
            assignment[j] = parts[0][0]

        # 3. Soft assignment
        units = [obs for j, obs in enumerate(observations) if j not in divided]
        units += [part for parts in divided.values() for _, part in parts]
        self._update_weights(units)

        # 4. Split test
        matched_obs: Dict[int, ObstacleObservation] = {}
        spawned: List[Tuple[int, ObstacleObservation]] = []
        for track_id, observation in matches:
            state = self.tracks[track_id]
            secondary = None
            split = self._split_test(observation.points)
            if split is None:
                state.reset_non_split_counter += 1
                if state.reset_non_split_counter >= p.split_reset_frames:
                    state.reset_split()
            else:
                state.split_counter += 1
                state.reset_non_split_counter = 0
                if state.split_counter >= state.hyst_split_threshold:
                    primary_points, secondary_points = split
                    model = observation.model
                    observation = ObstacleObservation.from_points(primary_points, model)
                    secondary = ObstacleObservation.from_points(secondary_points)
                    state.reset_split()
            matched_obs[track_id] = observation
            if secondary is not None:
                spawned.append((track_id, secondary))
                logger.info("Track %d split (%d + %d points)", track_id,
                            observation.num_points, secondary.num_points)
                self.split_count += 1

        # 5. Update matched tracks
        for track_id, observation in matched_obs.items():
            self._update_track(self.tracks[track_id], observation)

        # 6. Merge
        matched_ids = set(matched_obs)
        unmatched_ids = [tid for tid in self.tracks if tid not in matched_ids]
        merged = self._merge(unmatched_ids, matched_ids)

        # 7. Decay and timeout
        for track_id in unmatched_ids:
            if track_id in merged:
                continue
            state = self.tracks[track_id]
            state.frames_unmatched += 1
            state.weight *= p.weight_decay
            if state.frames_unmatched > p.track_timeout:
                self._delete_track(track_id, "timeout")

        # 8. New tracks
        created: Set[int] = set()
        for j, observation in enumerate(observations):
            if j not in assignment:
                state = self._create_track(observation)
                created.add(state.id)
                matched_obs[state.id] = observation
                assignment[j] = state.id
        for parent_id, observation in spawned:
            state = self._create_track(observation)
            created.add(state.id)
            matched_obs[state.id] = observation
            state.sibling_id = parent_id
            self.tracks[parent_id].sibling_id = state.id

        # Annotate observations
        for j, track_id in assignment.items():
            state = self.tracks[track_id]
            observations[j].id = track_id
            observations[j].center = state.position
            observations[j].velocity = state.velocity
        self.assignment = assignment

        # 9. Age and publish
        result = []
        for track_id, state in self.tracks.items():
            state.life_time += 1
            if track_id not in created:
                for observer in list(self._track_observers):
                    observer.on_track_updated(state)
            result.append(TrackedObstacle(
                id=track_id,
                position=state.position,
                velocity=state.velocity,
                life_time=state.life_time,
                weight=state.weight,
                ssv=state.ssv,
                observation=matched_obs.get(track_id)
            ))

        logger.debug("Frame %d: %d observations, %d tracks", self.frame_count,
                     len(observations), len(self.tracks))
        self.tracked = result
        return result

    # =========================================================================
    # Association
    # =========================================================================

    def _associate(self, observations: List[ObstacleObservation],
                   skip_obs: Set[int] = frozenset(),
                   skip_tracks: Set[int] = frozenset()) -> Dict[int, int]:
        """
        Hard assignment of observation indices to track ids.

        Valid tracks compete through a gated Hungarian assignment on the
        negative log-density; invalid tracks take the nearest leftover
        observation within the association radius. Skipped observations
        and tracks take no part.
        """
        assignment: Dict[int, int] = {}
        if not observations or not self.tracks:
            return assignment

        centers = np.array([obs.center for obs in observations])
        candidates = [s for s in self.tracks.values() if s.id not in skip_tracks]
        valid = [s for s in candidates if s.valid_obs_covar]
        invalid = [s for s in candidates if not s.valid_obs_covar]

        if valid:
            gate_sq = self.params.mahalanobis_gate ** 2
            cost = np.empty((len(valid), len(observations)))
            for i, state in enumerate(valid):
                logp = state.logpdf(centers)
                floor = state.logpdf_constant - 0.5 * gate_sq
                cost[i] = np.where(logp >= floor, -logp, _GATED_COST)
            cost[:, sorted(skip_obs)] = _GATED_COST

            rows, cols = linear_sum_assignment(cost)
            for i, j in zip(rows, cols):
                if cost[i, j] < _GATED_COST:
                    assignment[int(j)] = valid[i].id

        if invalid:
            pairs = []
            for state in invalid:
                dists = np.linalg.norm(centers - state.position, axis=1)
                for j, dist in enumerate(dists):
                    if (j not in assignment and j not in skip_obs
                            and dist <= self.params.max_association_distance):
                        pairs.append((dist, state.id, j))
            taken: Set[int] = set()
            for dist, track_id, j in sorted(pairs):
                if track_id in taken or j in assignment:
                    continue
                assignment[j] = track_id
                taken.add(track_id)

        return assignment

    def _update_weights(self, observations: List[ObstacleObservation]):
        """Responsibilities over valid tracks; weights become their mean."""
        self.responsibilities = {}
        valid = [s for s in self.tracks.values() if s.valid_obs_covar]
        if not valid or not observations:
            return

        centers = np.array([obs.center for obs in observations])
        weights = np.array([max(s.weight, np.finfo(float).tiny) for s in valid])
        log_joint = np.log(weights)[:, None] + np.array([s.logpdf(centers) for s in valid])
        resp = np.exp(log_joint - logsumexp(log_joint, axis=0))

        for i, state in enumerate(valid):
            self.responsibilities[state.id] = resp[i]
            state.weight = float(resp[i].mean())

    # =========================================================================
    # Split / Merge
    # =========================================================================

    def _split_test(self, points: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Two-means bimodality test on a cluster.

        Returns:
            (primary, secondary) point sets if the cluster is bimodal, else None
        """
        p = self.params
        if len(points) < p.split_min_points:
            return None

        sample = points
        if len(points) > p.split_sample_size:
            idx = self.rng.choice(len(points), p.split_sample_size, replace=False)
            sample = points[idx]

        kmeans = KMeans(n_clusters=2, n_init=3, random_state=self.seed)
        labels = kmeans.fit_predict(sample)
        counts = np.bincount(labels, minlength=2)
        if counts.min() < p.split_min_fraction * len(sample):
            return None

        mean_a = sample[labels == 0].mean(axis=0)
        mean_b = sample[labels == 1].mean(axis=0)
        separation = float(np.linalg.norm(mean_b - mean_a))
        if separation < 1e-9:
            return None
        axis = (mean_b - mean_a) / separation
        spread = float(np.std(sample[labels == 0] @ axis) + np.std(sample[labels == 1] @ axis))
        if separation <= p.split_separation * spread:
            return None

        full_labels = kmeans.predict(points)
        primary_label = int(np.argmax(np.bincount(full_labels, minlength=2)))
        primary = points[full_labels == primary_label]
        secondary = points[full_labels != primary_label]
        if len(secondary) == 0:
            return None
        return primary, secondary

    def _sibling_pairs(self) -> List[Tuple[TrackState, TrackState]]:
        pairs = {}
        for state in self.tracks.values():
            other = self.tracks.get(state.sibling_id)
            if other is None or not (state.valid_obs_covar and other.valid_obs_covar):
                continue
            key = (min(state.id, other.id), max(state.id, other.id))
            pairs[key] = (self.tracks[key[0]], self.tracks[key[1]])
        return [pairs[key] for key in sorted(pairs)]

    def _divide_between_siblings(self, observations: List[ObstacleObservation]
                                 ) -> Dict[int, List[Tuple[int, ObstacleObservation]]]:
        """
        Share a cluster still seen as one between the two tracks it split into.

        A cluster whose center lies inside the gate of the pair's combined
        Gaussian is divided point-wise by the higher log-density. The
        division only holds if each part keeps `split_min_fraction` of the
        points; otherwise the cluster goes through ordinary association.

        Returns:
            observation index -> [(track id, part)], larger part first
        """
        p = self.params
        divided: Dict[int, List[Tuple[int, ObstacleObservation]]] = {}
        if not observations:
            return divided

        gate_sq = p.mahalanobis_gate ** 2
        centers = np.array([obs.center for obs in observations])
        used: Set[int] = set()

        for a, b in self._sibling_pairs():
            if a.id in used or b.id in used:
                continue
            half = 0.5 * (a.position - b.position)
            cov = 0.5 * (a.obs_covar + b.obs_covar) + np.outer(half, half)
            diff = centers - (a.position - half)
            dist_sq = np.einsum('ij,jk,ik->i', diff, np.linalg.inv(cov), diff)

            for j in np.argsort(dist_sq):
                j = int(j)
                if dist_sq[j] > gate_sq:
                    break
                if j in divided:
                    continue
                points = observations[j].points
                if len(points) < p.split_min_points:
                    continue
                to_a = a.logpdf(points) >= b.logpdf(points)
                n_a = int(np.count_nonzero(to_a))
                if min(n_a, len(points) - n_a) < p.split_min_fraction * len(points):
                    continue

                parts = [(a.id, points[to_a]), (b.id, points[~to_a])]
                parts.sort(key=lambda part: len(part[1]), reverse=True)
                model = observations[j].model
                divided[j] = [(parts[0][0], ObstacleObservation.from_points(parts[0][1], model)),
                              (parts[1][0], ObstacleObservation.from_points(parts[1][1]))]
                used.update((a.id, b.id))
                break

        return divided

    def _merge(self, unmatched_ids: List[int], matched_ids: Set[int]) -> Set[int]:
        """Absorb unmatched tracks lying inside the gate of a matched track."""
        gate_sq = self.params.mahalanobis_gate ** 2
        merged: Set[int] = set()
        survivors = [self.tracks[tid] for tid in matched_ids
                     if self.tracks[tid].valid_obs_covar]

        for track_id in unmatched_ids:
            absorbed = self.tracks[track_id]
            for survivor in survivors:
                if survivor.mahalanobis_sq(absorbed.position)[0] <= gate_sq:
                    survivor.weight += absorbed.weight
                    logger.info("Track %d merged into track %d", track_id, survivor.id)
                    self._delete_track(track_id, "merge")
                    self.merge_count += 1
                    merged.add(track_id)
                    break
        return merged

    # =========================================================================
    # Track Lifecycle
    # =========================================================================

    def _update_track(self, state: TrackState, observation: ObstacleObservation):
        p = self.params
        state.kalman_filter.update(observation.center, p.noise_measurement)
        state.pos = np.asarray(observation.center, dtype=np.float64).copy()
        state.set_obs_covar(observation.covariance)

        ssv = fit_ssv(observation.points, p.enable_tight_fit)
        if p.filter_ssv_positions:
            ssv = ssv.translated(state.position - state.pos)
        state.ssv = ssv

        state.frames_unmatched = 0
        state.trajectory.append(state.position)

    def _create_track(self, observation: ObstacleObservation) -> TrackState:
        state = TrackState(self.next_id, observation.center, observation.covariance,
                           hyst_split_threshold=self.params.hyst_split_threshold)
        self.next_id += 1
        state.weight = 1.0 / max(1, len(self.tracks) + 1)
        state.ssv = fit_ssv(observation.points, self.params.enable_tight_fit)
        self.tracks[state.id] = state
        self.created_count += 1
        logger.info("Track %d created at %s", state.id, np.round(state.pos, 3))

        for observer in list(self._track_observers):
            observer.on_track_created(state)
        return state

    def _delete_track(self, track_id: int, reason: str = "reset") -> bool:
        """
        Remove a track and release its registered handles.

        Handles are released even if a track observer raises.

        Returns:
            True if the track existed
        """
        state = self.tracks.pop(track_id, None)
        if state is None:
            return False

        self.deleted_count += 1
        for other in self.tracks.values():
            if other.sibling_id == track_id:
                other.sibling_id = None
        logger.info("Track %d deleted (%s) after %d frames",
                    track_id, reason, state.life_time)
        try:
            for observer in list(self._track_observers):
                observer.on_track_deleted(state)
        finally:
            state.release_handles()
        return True

    def reset(self, track_id: int) -> bool:
        """Delete a track by id. Unknown ids are ignored."""
        return self._delete_track(track_id, "reset")

    def clear(self):
        """Delete every track. Ids keep counting up."""
        for track_id in list(self.tracks):
            self._delete_track(track_id, "clear")

    def get_track(self, track_id: int) -> Optional[TrackState]:
        return self.tracks.get(track_id)

    @property
    def num_tracks(self) -> int:
        return len(self.tracks)
