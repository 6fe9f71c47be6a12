"""Tests for plane extraction, surface classification and clustering."""
import itertools

import numpy as np
import pytest

from L4_detection import (
    PlaneCoefficients,
    SurfaceGroup,
    SurfaceSegmenter,
    SurfaceDetector,
    FrameData,
    classify_plane,
    fit_plane_ransac,
    plane_angle,
)

from conftest import make_floor


def tilted_plane(degrees):
    """Plane through the origin, normal tilted from +z about the x axis."""
    a = np.radians(degrees)
    return PlaneCoefficients(normal=np.array([0.0, -np.sin(a), np.cos(a)]), d=0.0)


def patch():
    return np.zeros((10, 3))


class TestClassification:
    """Angle-based surface group classification."""

    def test_plane_angle(self):
        assert plane_angle(tilted_plane(0), tilted_plane(90)) == pytest.approx(90.0)
        assert plane_angle(tilted_plane(0), tilted_plane(180)) == pytest.approx(180.0)

    def test_two_degrees_merge(self):
        groups = []
        assert classify_plane(groups, patch(), tilted_plane(0)) == 0
        assert classify_plane(groups, patch(), tilted_plane(2)) == 0
        assert len(groups) == 1
        assert groups[0].num_points == 20

    def test_ninety_degrees_split(self):
        groups = []
        classify_plane(groups, patch(), tilted_plane(0))
        assert classify_plane(groups, patch(), tilted_plane(90)) == 1
        assert len(groups) == 2

    def test_antiparallel_merge(self):
        groups = []
        classify_plane(groups, patch(), tilted_plane(0))
        assert classify_plane(groups, patch(), tilted_plane(179)) == 0
        assert len(groups) == 1

    def test_first_match_wins(self):
        groups = [SurfaceGroup(tilted_plane(0)), SurfaceGroup(tilted_plane(1))]
        assert classify_plane(groups, patch(), tilted_plane(0.5)) == 0
        assert groups[1].num_points == 0

    def test_representative_is_first_member(self):
        groups = []
        classify_plane(groups, patch(), tilted_plane(0))
        classify_plane(groups, patch(), tilted_plane(2))
        np.testing.assert_allclose(groups[0].coefficients.normal, [0.0, 0.0, 1.0])

    @pytest.mark.parametrize("order", list(itertools.permutations([0.0, 0.5, 1.0, 1.4])))
    def test_close_planes_form_one_group_in_any_order(self, order):
        groups = []
        for degrees in order:
            classify_plane(groups, patch(), tilted_plane(degrees))
        assert len(groups) == 1


class TestRansac:
    """Robust plane fitting."""

    def test_fits_noisy_floor(self, rng):
        floor = make_floor(rng)
        plane, inliers = fit_plane_ransac(floor, 0.02, 200, rng)
        assert abs(plane.normal[2]) == pytest.approx(1.0, abs=1e-3)
        assert len(inliers) == len(floor)

    def test_too_few_points(self, rng):
        plane, inliers = fit_plane_ransac(np.zeros((2, 3)), rng=rng)
        assert plane is None
        assert len(inliers) == 0

    def test_collinear_points_give_no_plane(self, rng):
        line = np.column_stack([np.linspace(0, 1, 20), np.zeros(20), np.zeros(20)])
        plane, inliers = fit_plane_ransac(line, rng=rng)
        assert plane is None


class TestSurfaceSegmenter:
    """Iterative plane removal and surface clustering."""

    def test_floor_and_box(self, floor_and_box):
        floor, box = floor_and_box
        result = SurfaceSegmenter(seed=0).segment(np.vstack([floor, box]))

        assert len(result.groups) == 1
        assert len(result.coefficients) == 1
        assert len(result.surfaces) == 1
        assert len(result.surfaces[0]) == len(floor)
        assert len(result.cloud_minus_surfaces) == len(box)

    def test_scene_without_planes(self, rng):
        cloud = rng.uniform(0.0, 1.0, (1000, 3))
        result = SurfaceSegmenter(seed=0).segment(cloud)
        assert len(result.cloud_minus_surfaces) == len(cloud)
        assert result.surfaces == []
        assert result.coefficients == []

    def test_non_finite_points_removed(self, rng):
        cloud = np.vstack([make_floor(rng), [[np.nan, 0.0, 0.0]]])
        result = SurfaceSegmenter(seed=0).segment(cloud)
        assert len(result.surface_cloud) + len(result.cloud_minus_surfaces) == len(cloud) - 1

    def test_coplanar_tables_split_into_two_surfaces(self, rng):
        table_a = np.column_stack([rng.uniform(0.0, 0.5, (2500, 2)), np.full(2500, 0.7)])
        table_b = table_a + np.array([1.0, 0.0, 0.0])
        result = SurfaceSegmenter(seed=0).segment(np.vstack([table_a, table_b]))

        assert len(result.groups) == 1
        assert len(result.surfaces) == 2
        assert sorted(len(s) for s in result.surfaces) == [2500, 2500]

    def test_floor_and_wall_are_separate_groups(self, rng):
        floor = make_floor(rng)
        wall = np.column_stack([np.full(3000, 1.2), rng.uniform(0.0, 1.0, (3000, 2))])
        result = SurfaceSegmenter(seed=0).segment(np.vstack([floor, wall]))

        assert len(result.groups) == 2
        normals = [c.normal for c in result.coefficients]
        assert abs(normals[0] @ normals[1]) < 0.05

    def test_small_surfaces_dropped_by_size_bounds(self, rng):
        floor = make_floor(rng)
        segmenter = SurfaceSegmenter(cluster_min_size=6000, seed=0)
        result = segmenter.segment(floor)
        assert len(result.groups) == 1
        assert result.surfaces == []


class TestSurfaceDetector:
    def test_fills_frame_data(self, floor_and_box):
        floor, box = floor_and_box
        data = FrameData(frame_num=3, cloud=np.vstack([floor, box]))
        received = []

        class Sink:
            def update_frame(self, frame_data):
                received.append(frame_data)

        detector = SurfaceDetector(SurfaceSegmenter(seed=0))
        detector.attach_observer(Sink())
        detector.update_frame(data)

        assert received == [data]
        assert len(data.cloud_minus_surfaces) == len(box)
        assert len(data.surfaces) == 1
        assert len(data.plane_coefficients) == 1
