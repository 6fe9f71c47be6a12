"""Tests for the swept sphere volume fit."""
import numpy as np
import pytest

from L5_tracking import ShapeKind, SSVShape, fit_ssv, fit_sphere, fit_capsule

from conftest import make_blob


def max_distance_to_shape(points, shape):
    if shape.kind == ShapeKind.SPHERE:
        return np.linalg.norm(points - shape.point_a, axis=1).max()
    a, b = shape.point_a, shape.point_b
    ab = b - a
    t = np.clip((points - a) @ ab / max(ab @ ab, 1e-12), 0.0, 1.0)
    return np.linalg.norm(points - (a + np.outer(t, ab)), axis=1).max()


class TestFitSsv:
    def test_single_point_is_zero_sphere(self):
        shape = fit_ssv(np.array([[1.0, 2.0, 3.0]]))
        assert shape.kind == ShapeKind.SPHERE
        assert shape.radius == 0.0
        np.testing.assert_allclose(shape.point_a, [1.0, 2.0, 3.0])

    def test_round_blob_fits_sphere(self, rng):
        shape = fit_ssv(make_blob(rng, [0.0, 0.0, 0.0], 500, 0.05))
        assert shape.kind == ShapeKind.SPHERE

    def test_rod_fits_capsule(self, rng):
        rod = np.column_stack([rng.uniform(-0.5, 0.5, 400),
                               rng.normal(0.0, 0.01, 400),
                               rng.normal(0.0, 0.01, 400)])
        shape = fit_ssv(rod)
        assert shape.kind == ShapeKind.CAPSULE
        assert shape.radius < 0.1
        assert abs(shape.point_b[0] - shape.point_a[0]) > 0.7

    @pytest.mark.parametrize("tight", [True, False])
    def test_all_points_enclosed(self, rng, tight):
        points = rng.normal(size=(300, 3)) * np.array([0.3, 0.05, 0.1])
        for shape in (fit_sphere(points), fit_capsule(points, tight), fit_ssv(points, tight)):
            assert max_distance_to_shape(points, shape) <= shape.radius + 1e-9

    def test_tight_capsule_not_larger(self, rng):
        points = rng.normal(size=(300, 3)) * np.array([0.3, 0.05, 0.05])
        assert fit_capsule(points, True).volume <= fit_capsule(points, False).volume + 1e-12

    def test_translated(self):
        shape = SSVShape(ShapeKind.CAPSULE, 0.1, np.zeros(3), np.ones(3))
        moved = shape.translated(np.array([1.0, 0.0, 0.0]))
        np.testing.assert_allclose(moved.point_a, [1.0, 0.0, 0.0])
        np.testing.assert_allclose(moved.point_b, [2.0, 1.0, 1.0])
        assert moved.volume == pytest.approx(shape.volume)
