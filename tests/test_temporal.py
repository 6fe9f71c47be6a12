"""Tests for the temporal voxel aggregation filters."""
import numpy as np
import pytest

from L4_detection import BitHistoryAggregator, Pt1Aggregator, PassThroughAggregator, voxel_keys

# Points at voxel centres so truncation is unambiguous
VOXEL_A = np.array([[0.105, 0.205, 0.305]])
KEY_A = (10, 20, 30)
FAR_AWAY = np.array([[5.005, 5.005, 5.005]])


def run_frame(aggregator, points):
    aggregator.begin_frame()
    aggregator.add_points(points)
    return aggregator.get_filtered()


class TestVoxelKeys:
    """Quantization of points to grid cells."""

    def test_truncation_toward_zero(self):
        keys = voxel_keys(np.array([[0.019, -0.019, 0.0]]), 0.01)
        np.testing.assert_array_equal(keys, [[1, -1, 0]])

    def test_larger_voxelization_clears_low_bit(self):
        keys = voxel_keys(np.array([[0.035, 0.045, 0.005]]), 0.01, larger_voxelization=True)
        np.testing.assert_array_equal(keys, [[2, 4, 0]])


class TestBitHistory:
    """Bit-history occupancy filter."""

    def test_emitted_after_threshold_frames(self):
        agg = BitHistoryAggregator(threshold=10)
        for _ in range(9):
            assert len(run_frame(agg, VOXEL_A)) == 0
        out = run_frame(agg, VOXEL_A)
        np.testing.assert_allclose(out, [[0.10, 0.20, 0.30]])
        assert agg.popcount(KEY_A) == 10

    def test_duplicate_points_count_once_per_frame(self):
        agg = BitHistoryAggregator()
        run_frame(agg, np.vstack([VOXEL_A, VOXEL_A + 0.001, VOXEL_A]))
        assert agg.popcount(KEY_A) == 1
        assert len(agg.history) == 1

    def test_fully_set_voxel_stops_after_23_unseen_frames(self):
        agg = BitHistoryAggregator(threshold=10)
        neighbour = VOXEL_A + np.array([[0.01, 0.0, 0.0]])
        for _ in range(32):
            run_frame(agg, np.vstack([VOXEL_A, neighbour]))

        # The neighbour keeps VOXEL_A inside the frame box
        for unseen in range(1, 23):
            out = run_frame(agg, neighbour)
            assert agg.popcount(KEY_A) == 32 - unseen
            assert len(out) == 2
        out = run_frame(agg, neighbour)
        assert agg.popcount(KEY_A) == 9
        assert len(out) == 1

    def test_fully_set_voxel_evicted_outside_expanded_box(self):
        agg = BitHistoryAggregator()
        for _ in range(32):
            run_frame(agg, VOXEL_A)
        assert agg.popcount(KEY_A) == 32

        run_frame(agg, FAR_AWAY)
        assert KEY_A not in agg.history

    def test_voxel_within_margin_survives(self):
        agg = BitHistoryAggregator(margin=10)
        near = VOXEL_A + np.array([[0.05, 0.0, 0.0]])  # 5 grid units away
        for _ in range(5):
            run_frame(agg, VOXEL_A)
        run_frame(agg, near)
        assert KEY_A in agg.history

    def test_margin_applied_once_per_frame(self):
        agg = BitHistoryAggregator(margin=10)
        just_outside = VOXEL_A + np.array([[0.11, 0.0, 0.0]])  # 11 grid units away
        run_frame(agg, VOXEL_A)
        run_frame(agg, just_outside)
        assert KEY_A not in agg.history

    def test_zero_word_evicted_inside_box(self):
        agg = BitHistoryAggregator()
        neighbour = VOXEL_A + np.array([[0.01, 0.0, 0.0]])
        run_frame(agg, np.vstack([VOXEL_A, neighbour]))
        for _ in range(31):
            run_frame(agg, neighbour)
        assert KEY_A in agg.history
        run_frame(agg, neighbour)
        assert KEY_A not in agg.history

    def test_empty_frame_clears_history(self):
        agg = BitHistoryAggregator()
        run_frame(agg, VOXEL_A)
        out = run_frame(agg, np.empty((0, 3)))
        assert len(out) == 0
        assert agg.history == {}

    def test_dictionary_stays_bounded_for_moving_points(self):
        agg = BitHistoryAggregator(margin=10)
        for i in range(200):
            run_frame(agg, VOXEL_A + np.array([[0.01 * i, 0.0, 0.0]]))
        assert len(agg.history) <= 11


class TestPt1:
    """First-order low-pass occupancy filter."""

    def test_converges_toward_target_and_emits(self):
        agg = Pt1Aggregator(retain=0.9, target=10.0, threshold=4.0)
        emitted_at = None
        for frame in range(1, 60):
            out = run_frame(agg, VOXEL_A)
            expected = 10.0 * (1.0 - 0.9 ** frame)
            assert agg.values[KEY_A] == pytest.approx(expected)
            if emitted_at is None and len(out):
                emitted_at = frame
        assert emitted_at == 5
        assert agg.values[KEY_A] < 10.0
        assert agg.values[KEY_A] == pytest.approx(10.0, abs=0.1)

    def test_geometric_decay_after_occlusion(self):
        agg = Pt1Aggregator(retain=0.9)
        for _ in range(20):
            run_frame(agg, VOXEL_A)
        start = agg.values[KEY_A]
        for k in range(1, 6):
            run_frame(agg, FAR_AWAY)
            assert agg.values[KEY_A] == pytest.approx(start * 0.9 ** k)

    def test_decayed_voxels_are_pruned(self):
        agg = Pt1Aggregator(prune_below=1e-3)
        run_frame(agg, VOXEL_A)
        for _ in range(100):
            run_frame(agg, FAR_AWAY)
        assert KEY_A not in agg.values


class TestPassThrough:
    def test_emits_points_unchanged(self):
        agg = PassThroughAggregator()
        points = np.array([[0.123, 0.456, 0.789]])
        np.testing.assert_allclose(run_frame(agg, points), points)
        assert len(run_frame(agg, np.empty((0, 3)))) == 0
