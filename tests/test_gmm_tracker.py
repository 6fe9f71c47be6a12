"""Tests for the Gaussian mixture obstacle tracker and its track state."""
import numpy as np
import pytest
from scipy.stats import multivariate_normal

from L4_detection import ObstacleObservation
from L5_tracking import (
    ConstantVelocityKalmanFilter,
    GMMObstacleTracker,
    ObstacleTrackerParams,
    TrackObserver,
    TrackState,
    fit_ssv,
)

from conftest import make_blob

DT = 1.0 / 30.0


def blob_obs(rng, center, n=300, sigma=0.02):
    return ObstacleObservation.from_points(make_blob(rng, center, n, sigma))


def step(tracker, clock, observations):
    clock.advance(DT)
    return tracker.update(observations)


class Handle:
    def __init__(self, fail=False):
        self.removed = False
        self.fail = fail

    def remove(self):
        self.removed = True
        if self.fail:
            raise RuntimeError("artist already gone")


class RecordingObserver(TrackObserver):
    def __init__(self):
        self.events = []

    def on_track_created(self, state):
        self.events.append(("created", state.id))

    def on_track_updated(self, state):
        self.events.append(("updated", state.id))

    def on_track_deleted(self, state):
        self.events.append(("deleted", state.id))


@pytest.fixture
def tracker(clock):
    return GMMObstacleTracker(clock=clock, seed=0)


class TestTrackState:
    """Covariance validity and Gaussian evaluation."""

    def test_logpdf_matches_scipy(self, rng):
        mean = np.array([0.5, -0.2, 1.0])
        a = rng.normal(size=(3, 3))
        cov = a @ a.T + 0.1 * np.eye(3)
        state = TrackState(0, mean, cov)

        points = rng.normal(size=(20, 3)) + mean
        assert state.valid_obs_covar
        np.testing.assert_allclose(state.logpdf(points),
                                   multivariate_normal(mean, cov).logpdf(points))

    @pytest.mark.parametrize("cov", [
        np.zeros((3, 3)),
        np.diag([1.0, 1.0, 0.0]),
        np.diag([1.0, -1.0, 1.0]),
        np.full((3, 3), np.nan),
        np.array([[1.0, 0.5, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]),
    ], ids=["zero", "singular", "indefinite", "nan", "asymmetric"])
    def test_invalid_covariance_flagged(self, cov):
        state = TrackState(0, np.zeros(3), cov)
        assert not state.valid_obs_covar

    def test_recovers_when_covariance_becomes_valid(self):
        state = TrackState(0, np.zeros(3), np.zeros((3, 3)))
        state.set_obs_covar(np.eye(3) * 0.01)
        assert state.valid_obs_covar
        np.testing.assert_allclose(state.obs_covar_inv, np.eye(3) * 100.0)

    def test_release_handles_continues_after_failure(self):
        state = TrackState(0, np.zeros(3), np.eye(3))
        handles = [Handle(), Handle(fail=True), Handle()]
        state.vis_handles = {str(i): h for i, h in enumerate(handles)}

        state.release_handles()

        assert all(h.removed for h in handles)
        assert state.vis_handles == {}


class TestAssociation:
    """Identity maintenance across frames."""

    def test_ids_stable_over_frames(self, tracker, clock, rng):
        for _ in range(10):
            observations = [blob_obs(rng, [0.0, 0.0, 0.0]), blob_obs(rng, [1.0, 0.0, 0.0])]
            step(tracker, clock, observations)
            assert [obs.id for obs in observations] == [0, 1]
        assert tracker.num_tracks == 2
        assert tracker.created_count == 2

    def test_order_of_observations_does_not_matter(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0]), blob_obs(rng, [1.0, 0.0, 0.0])])
        observations = [blob_obs(rng, [1.0, 0.0, 0.0]), blob_obs(rng, [0.0, 0.0, 0.0])]
        step(tracker, clock, observations)
        assert [obs.id for obs in observations] == [1, 0]
        assert tracker.assignment == {0: 1, 1: 0}

    def test_gated_observation_starts_new_track(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], sigma=0.01)])
        observations = [blob_obs(rng, [0.3, 0.0, 0.0], sigma=0.01)]
        step(tracker, clock, observations)
        assert observations[0].id == 1
        assert tracker.num_tracks == 2
        assert tracker.get_track(0).frames_unmatched == 1

    def test_observations_annotated_with_estimate(self, tracker, clock, rng):
        points = make_blob(rng, [0.0, 0.0, 0.0])
        step(tracker, clock, [ObstacleObservation.from_points(points)])
        obs = ObstacleObservation.from_points(points + np.array([0.01, 0.0, 0.0]))
        step(tracker, clock, [obs])

        state = tracker.get_track(0)
        assert obs.id == 0
        np.testing.assert_allclose(obs.center, state.position)

        expected = ConstantVelocityKalmanFilter()
        expected.init(points.mean(axis=0))
        expected.predict(DT)
        expected.update(points.mean(axis=0) + np.array([0.01, 0.0, 0.0]))
        np.testing.assert_allclose(obs.velocity, expected.get_velocity())
        assert obs.velocity[0] > 0.0

    def test_responsibilities_sum_to_one(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], sigma=0.1),
                              blob_obs(rng, [0.2, 0.0, 0.0], sigma=0.1)])
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], sigma=0.1),
                              blob_obs(rng, [0.2, 0.0, 0.0], sigma=0.1)])
        resp = np.array([tracker.responsibilities[0], tracker.responsibilities[1]])
        np.testing.assert_allclose(resp.sum(axis=0), [1.0, 1.0])
        weights = [tracker.get_track(i).weight for i in (0, 1)]
        assert sum(weights) == pytest.approx(1.0)

    def test_zero_covariance_track_uses_nearest_centroid(self, tracker, clock):
        single = ObstacleObservation.from_points(np.array([[0.0, 0.0, 0.0]]))
        step(tracker, clock, [single])
        state = tracker.get_track(0)
        assert not state.valid_obs_covar

        moved = ObstacleObservation.from_points(np.array([[0.1, 0.0, 0.0]]))
        step(tracker, clock, [moved])
        assert moved.id == 0
        assert tracker.num_tracks == 1
        assert 0 not in tracker.responsibilities

    def test_nearest_centroid_respects_radius(self, tracker, clock):
        step(tracker, clock, [ObstacleObservation.from_points(np.array([[0.0, 0.0, 0.0]]))])
        far = ObstacleObservation.from_points(np.array([[2.0, 0.0, 0.0]]))
        step(tracker, clock, [far])
        assert far.id == 1


class TestLifecycle:
    """Creation, timeout, reset and observer notification."""

    def test_timeout(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        for _ in range(15):
            step(tracker, clock, [])
        assert tracker.get_track(0).frames_unmatched == 15
        step(tracker, clock, [])
        assert tracker.num_tracks == 0
        assert tracker.deleted_count == 1

    def test_unmatched_weight_decays(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        weight = tracker.get_track(0).weight
        step(tracker, clock, [])
        assert tracker.get_track(0).weight == pytest.approx(weight * 0.9)

    def test_ids_never_reused(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        tracker.reset(0)
        observations = [blob_obs(rng, [0.0, 0.0, 0.0])]
        step(tracker, clock, observations)
        assert observations[0].id == 1

        tracker.clear()
        assert tracker.num_tracks == 0
        observations = [blob_obs(rng, [0.0, 0.0, 0.0])]
        step(tracker, clock, observations)
        assert observations[0].id == 2

    def test_reset_unknown_id(self, tracker):
        assert tracker.reset(42) is False

    def test_observer_events(self, tracker, clock, rng):
        observer = RecordingObserver()
        tracker.attach_track_observer(observer)

        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        tracker.reset(0)
        tracker.detach_track_observer(observer)
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])

        assert observer.events == [("created", 0), ("updated", 0), ("deleted", 0)]

    def test_observer_detaching_during_event_does_not_starve_others(self, tracker, clock, rng):
        class OneShot(RecordingObserver):
            def on_track_created(self, state):
                super().on_track_created(state)
                tracker.detach_track_observer(self)

        first, second = OneShot(), RecordingObserver()
        tracker.attach_track_observer(first)
        tracker.attach_track_observer(second)

        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])

        assert first.events == [("created", 0)]
        assert second.events == [("created", 0), ("updated", 0)]

    def test_handles_released_when_observer_raises(self, tracker, clock, rng):
        class Exploding(TrackObserver):
            def on_track_deleted(self, state):
                raise RuntimeError("observer failed")

        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        handle = Handle()
        tracker.get_track(0).vis_handles['label'] = handle
        tracker.attach_track_observer(Exploding())

        with pytest.raises(RuntimeError):
            tracker.reset(0)
        assert handle.removed
        assert tracker.num_tracks == 0

    @pytest.mark.parametrize("filtered", [False, True])
    def test_shape_follows_filtered_position(self, clock, rng, filtered):
        params = ObstacleTrackerParams(filter_ssv_positions=filtered)
        tracker = GMMObstacleTracker(params, clock=clock, seed=0)
        points = make_blob(rng, [0.0, 0.0, 0.0], 300, 0.02)
        step(tracker, clock, [ObstacleObservation.from_points(points)])
        moved = points + np.array([0.01, 0.0, 0.0])
        step(tracker, clock, [ObstacleObservation.from_points(moved)])

        state = tracker.get_track(0)
        shift = state.position - state.pos
        assert np.linalg.norm(shift) > 1e-4
        measured = fit_ssv(moved)
        expected = measured.translated(shift) if filtered else measured
        assert state.ssv.kind == measured.kind
        assert state.ssv.radius == pytest.approx(measured.radius)
        np.testing.assert_allclose(state.ssv.point_a, expected.point_a)

    def test_output_lists_every_track(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0]), blob_obs(rng, [1.0, 0.0, 0.0])])
        result = step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0])])
        assert [t.id for t in result] == [0, 1]
        assert result[0].observation is not None
        assert result[1].observation is None
        assert all(t.life_time == 2 for t in result)
        assert result[0].ssv is not None
        assert tracker.tracked is result


class TestMergeAndSplit:
    """Split hysteresis and merge of absorbed tracks."""

    def test_merge_into_wide_neighbour(self, tracker, clock, rng):
        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], sigma=0.1),
                              blob_obs(rng, [0.25, 0.0, 0.0], sigma=0.01)])
        assert tracker.num_tracks == 2

        step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], sigma=0.1)])
        assert tracker.num_tracks == 1
        assert tracker.get_track(1) is None
        assert tracker.merge_count == 1
        assert tracker.get_track(0).weight == pytest.approx(1.0)

    def test_split_after_hysteresis(self, tracker, clock, rng):
        points = np.vstack([make_blob(rng, [0.0, 0.0, 0.0], 300, 0.01),
                            make_blob(rng, [0.2, 0.0, 0.0], 200, 0.01)])

        step(tracker, clock, [ObstacleObservation.from_points(points)])
        state = tracker.get_track(0)
        for expected in (1, 2):
            step(tracker, clock, [ObstacleObservation.from_points(points)])
            assert state.split_counter == expected
            assert tracker.num_tracks == 1

        observations = [ObstacleObservation.from_points(points)]
        step(tracker, clock, observations)

        assert tracker.num_tracks == 2
        assert tracker.split_count == 1
        assert observations[0].id == 0
        assert state.split_counter == 0
        np.testing.assert_allclose(tracker.get_track(1).pos, [0.2, 0.0, 0.0], atol=0.005)
        np.testing.assert_allclose(state.pos, [0.0, 0.0, 0.0], atol=0.005)

    def test_split_tracks_keep_ids_while_cluster_stays_joined(self, tracker, clock, rng):
        points = np.vstack([make_blob(rng, [0.0, 0.0, 0.0], 300, 0.01),
                            make_blob(rng, [0.2, 0.0, 0.0], 200, 0.01)])

        for frame in range(12):
            observations = [ObstacleObservation.from_points(points)]
            result = step(tracker, clock, observations)
            assert observations[0].id == 0
            if frame >= 3:
                assert [t.id for t in result] == [0, 1]
                assert all(t.observation is not None for t in result)

        assert tracker.created_count == 2
        assert tracker.split_count == 1
        assert tracker.merge_count == 0
        assert tracker.get_track(0).sibling_id == 1
        np.testing.assert_allclose(tracker.get_track(1).pos, [0.2, 0.0, 0.0], atol=0.005)
        np.testing.assert_allclose(tracker.get_track(0).pos, [0.0, 0.0, 0.0], atol=0.005)
        weights = [tracker.get_track(i).weight for i in (0, 1)]
        np.testing.assert_allclose(weights, [0.5, 0.5])

    def test_separated_siblings_take_their_own_clusters(self, tracker, clock, rng):
        points = np.vstack([make_blob(rng, [0.0, 0.0, 0.0], 300, 0.01),
                            make_blob(rng, [0.2, 0.0, 0.0], 200, 0.01)])
        for _ in range(12):
            step(tracker, clock, [ObstacleObservation.from_points(points)])
        assert tracker.num_tracks == 2

        observations = [blob_obs(rng, [0.2, 0.0, 0.0], 200, 0.01),
                        blob_obs(rng, [0.0, 0.0, 0.0], 300, 0.01)]
        step(tracker, clock, observations)
        assert [obs.id for obs in observations] == [1, 0]
        assert tracker.created_count == 2

    def test_deleting_a_sibling_clears_the_link(self, tracker, clock, rng):
        points = np.vstack([make_blob(rng, [0.0, 0.0, 0.0], 300, 0.01),
                            make_blob(rng, [0.2, 0.0, 0.0], 200, 0.01)])
        for _ in range(4):
            step(tracker, clock, [ObstacleObservation.from_points(points)])
        tracker.reset(1)
        assert tracker.get_track(0).sibling_id is None

    def test_split_counter_resets_after_unimodal_frames(self, tracker, clock, rng):
        bimodal = np.vstack([make_blob(rng, [0.0, 0.0, 0.0], 250, 0.01),
                             make_blob(rng, [0.2, 0.0, 0.0], 250, 0.01)])
        unimodal = make_blob(rng, [0.1, 0.0, 0.0], 300, 0.01)

        for _ in range(3):
            step(tracker, clock, [ObstacleObservation.from_points(bimodal)])
        state = tracker.get_track(0)
        assert state.split_counter == 2

        for _ in range(4):
            step(tracker, clock, [ObstacleObservation.from_points(unimodal)])
        assert state.split_counter == 2
        assert state.reset_non_split_counter == 4

        step(tracker, clock, [ObstacleObservation.from_points(unimodal)])
        assert state.split_counter == 0
        assert state.reset_non_split_counter == 0
        assert tracker.num_tracks == 1
        assert tracker.split_count == 0

    def test_single_gaussian_never_splits(self, tracker, clock, rng):
        for _ in range(6):
            step(tracker, clock, [blob_obs(rng, [0.0, 0.0, 0.0], 400, 0.05)])
        assert tracker.split_count == 0
        assert tracker.get_track(0).split_counter == 0
