"""
Tests for rigcalib.core.parameters.
"""

import numpy as np
import pytest

from rigcalib.core.config import CalibrationConfig
from rigcalib.core.parameters import CX, CY, FX, FY, ParameterLayout
from rigcalib.core.types import (
    CameraMatrix,
    DistortionCoefficients,
    InvalidParameterError,
    Pose,
)


def _random_quantities(layout, seed=0):
    rng = np.random.default_rng(seed)
    camera = CameraMatrix(*rng.uniform(100.0, 900.0, 4))
    dist = DistortionCoefficients(rng.normal(0.0, 0.1, layout.n_dist))
    poses = [Pose(rng.normal(size=3), rng.normal(size=3)) for _ in range(layout.n_views)]
    return camera, dist, poses


class TestFromConfig:
    def test_default_layout(self):
        layout = ParameterLayout.from_config(CalibrationConfig(), n_views=3)
        assert layout.n_dist == 5
        assert layout.size == 4 + 5 + 18
        assert layout.n_free == layout.size
        assert layout.forced_zero == ()

    @pytest.mark.parametrize(
        "options, length",
        [
            ({}, 5),
            ({"rational_model": True}, 8),
            ({"thin_prism_model": True}, 12),
            ({"tilted_model": True}, 14),
            ({"rational_model": True, "tilted_model": True}, 14),
        ],
    )
    def test_distortion_length(self, options, length):
        layout = ParameterLayout.from_config(CalibrationConfig(**options), n_views=2)
        assert layout.n_dist == length

    def test_disabled_groups_inside_vector_are_zeroed(self):
        layout = ParameterLayout.from_config(CalibrationConfig(tilted_model=True), n_views=1)
        assert layout.forced_zero == (5, 6, 7, 8, 9, 10, 11)
        assert layout.mask.free_names() == ["fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2", "k3", "tau_x", "tau_y"]

    def test_fixed_entries(self):
        config = CalibrationConfig(
            fix_principal_point=True,
            zero_tangent_dist=True,
            fix_k2=True,
            rational_model=True,
            fix_k5=True,
        )
        layout = ParameterLayout.from_config(config, n_views=2)
        assert layout.mask.free_names() == ["fx", "fy", "k1", "k3", "k4", "k6"]
        assert layout.forced_zero == (2, 3)
        assert layout.n_free == 6 + 12

    def test_fix_aspect_ratio_makes_fx_dependent(self):
        layout = ParameterLayout.from_config(CalibrationConfig(fix_aspect_ratio=True), 1, aspect_ratio=1.25)
        assert layout.aspect_ratio == 1.25
        assert not layout.mask.intrinsics[FX]
        assert layout.mask.intrinsics[FY]

    def test_fix_aspect_ratio_needs_ratio(self):
        with pytest.raises(InvalidParameterError):
            ParameterLayout.from_config(CalibrationConfig(fix_aspect_ratio=True), 1)

    def test_ratio_ignored_without_flag(self):
        layout = ParameterLayout.from_config(CalibrationConfig(), 1, aspect_ratio=2.0)
        assert layout.aspect_ratio is None


class TestPackUnpack:
    @pytest.mark.parametrize("length", [5, 8, 12, 14])
    def test_round_trip(self, length):
        config = CalibrationConfig(
            rational_model=length >= 8,
            thin_prism_model=length >= 12,
            tilted_model=length == 14,
        )
        layout = ParameterLayout.from_config(config, n_views=4)
        camera, dist, poses = _random_quantities(layout)
        x = layout.pack(camera, dist, poses)
        assert x.shape == (layout.size,)

        camera2, dist2, poses2 = layout.unpack(x)
        assert camera2 == camera
        np.testing.assert_array_equal(dist2.values, dist.values)
        for a, b in zip(poses2, poses):
            np.testing.assert_array_equal(a.rotation_vector, b.rotation_vector)
            np.testing.assert_array_equal(a.translation_vector, b.translation_vector)
        np.testing.assert_array_equal(layout.pack(camera2, dist2, poses2), x)

    def test_pose_slices(self):
        layout = ParameterLayout.from_config(CalibrationConfig(), n_views=3)
        camera, dist, poses = _random_quantities(layout)
        x = layout.pack(camera, dist, poses)
        np.testing.assert_array_equal(x[layout.pose_slice(2)][:3], poses[2].rotation_vector)

    def test_wrong_counts(self):
        layout = ParameterLayout.from_config(CalibrationConfig(), n_views=2)
        camera, dist, poses = _random_quantities(layout)
        with pytest.raises(InvalidParameterError):
            layout.pack(camera, dist, poses[:1])
        with pytest.raises(InvalidParameterError):
            layout.pack(camera, dist.resized(8), poses)
        with pytest.raises(ValueError):
            layout.unpack(np.zeros(layout.size + 1))


class TestApplyStep:
    def test_fixed_entries_are_bitwise_unchanged(self):
        config = CalibrationConfig(fix_principal_point=True, fix_k1=True, zero_tangent_dist=True)
        layout = ParameterLayout.from_config(config, n_views=2)
        camera, dist, poses = _random_quantities(layout, seed=4)
        x = layout.pack(camera, dist, poses)
        x_new = layout.apply_step(x, np.full(layout.n_free, 0.5))

        fixed = np.setdiff1d(np.arange(layout.size), layout.free_indices)
        assert set(fixed) == {CX, CY, 4, 6, 7}
        assert x_new[fixed].tobytes() == x[fixed].tobytes()
        np.testing.assert_allclose(x_new[layout.free_indices], x[layout.free_indices] + 0.5)

    def test_dependent_fx_follows_fy(self):
        layout = ParameterLayout.from_config(CalibrationConfig(fix_aspect_ratio=True), 1, aspect_ratio=0.9)
        x = layout.pack(CameraMatrix(900.0, 1000.0, 320.0, 240.0), DistortionCoefficients.zeros(), [Pose(np.zeros(3), np.ones(3))])
        x_new = layout.apply_step(x, np.full(layout.n_free, 10.0))
        assert x_new[FY] == 1010.0
        assert x_new[FX] == pytest.approx(0.9 * 1010.0)

    def test_selection_matrix_matches_apply_step(self):
        layout = ParameterLayout.from_config(
            CalibrationConfig(fix_aspect_ratio=True, fix_k3=True), 2, aspect_ratio=1.1
        )
        camera = CameraMatrix(1100.0, 1000.0, 320.0, 240.0)
        _, dist, poses = _random_quantities(layout, seed=2)
        x = layout.pack(camera, dist, poses)
        delta = np.random.default_rng(5).normal(size=layout.n_free)
        np.testing.assert_allclose(layout.apply_step(x, delta), x + layout.selection_matrix() @ delta)

    def test_step_shape_is_checked(self):
        layout = ParameterLayout.from_config(CalibrationConfig(), n_views=1)
        with pytest.raises(ValueError):
            layout.apply_step(np.zeros(layout.size), np.zeros(layout.n_free + 1))
