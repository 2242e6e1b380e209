"""
End-to-end tests for rigcalib.core.calibrator.
"""

import cv2
import numpy as np
import pytest

from rigcalib import calibrate_camera
from rigcalib.core.calibrator import CameraCalibrator
from rigcalib.core.config import CalibrationConfig
from rigcalib.core.intrinsic import image_center
from rigcalib.core.types import (
    CameraMatrix,
    DidNotConverge,
    DistortionCoefficients,
    InsufficientViewsError,
    InvalidParameterError,
    PoseEstimationError,
    TermCriteria,
    TerminationStatus,
    View,
)
from rigcalib.synthetic import look_at_pose, make_views

LONG_RUN = TermCriteria(max_count=200)


@pytest.fixture
def noisy_views(board, poses, camera, distortion):
    return make_views(board, poses, camera, distortion, noise=0.3, rng=np.random.default_rng(42))


@pytest.fixture
def rig_views(sample_points, camera, distortion):
    """Views of a non-planar rig."""
    positions = [(0.3, 0.1, -1.0), (-0.3, 0.2, -1.1), (0.1, -0.3, -0.9), (-0.2, -0.2, -1.2)]
    rig_poses = [look_at_pose(p, (0.0, 0.0, 0.0)) for p in positions]
    return make_views(sample_points, rig_poses, camera, distortion)


class TestRoundTrip:
    def test_noiseless_recovery(self, views, poses, camera, distortion, image_size):
        result = calibrate_camera(views, image_size, CalibrationConfig(criteria=LONG_RUN))

        assert result.status is TerminationStatus.CONVERGED
        assert result.reprojection_error < 1e-6
        np.testing.assert_allclose(result.camera_matrix.as_array(), camera.as_array(), rtol=1e-6)
        np.testing.assert_allclose(result.dist_coeffs.values, distortion.values, atol=1e-6)
        for estimated, expected in zip(result.poses, poses):
            np.testing.assert_allclose(estimated.rotation_vector, expected.rotation_vector, atol=1e-6)
            np.testing.assert_allclose(estimated.translation_vector, expected.translation_vector, atol=1e-6)

    def test_result_metadata(self, noisy_views, image_size):
        result = calibrate_camera(noisy_views, image_size)
        assert result.image_size == image_size
        assert result.num_views == len(noisy_views)
        assert len(result.per_view_errors) == len(noisy_views)
        assert result.initial_error >= result.reprojection_error
        assert result.iterations > 0
        total = sum(e ** 2 * v.num_points for e, v in zip(result.per_view_errors, noisy_views))
        assert result.reprojection_error == pytest.approx(
            np.sqrt(total / sum(v.num_points for v in noisy_views))
        )

    def test_agrees_with_opencv(self, noisy_views, image_size):
        result = calibrate_camera(noisy_views, image_size, CalibrationConfig(criteria=LONG_RUN))

        rms, K, D, _, _ = cv2.calibrateCamera(
            [v.object_points.astype(np.float32) for v in noisy_views],
            [v.image_points.astype(np.float32) for v in noisy_views],
            image_size,
            None,
            None,
            criteria=(cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 200, np.finfo(float).eps),
        )
        np.testing.assert_allclose(result.camera_matrix.matrix, K, rtol=2e-3, atol=1e-6)
        np.testing.assert_allclose(result.dist_coeffs.values, D.ravel(), atol=5e-3)
        assert result.reprojection_error == pytest.approx(rms, rel=1e-2)

    def test_three_dimensional_rig_with_guess(self, rig_views, camera, distortion, image_size):
        guess = CameraMatrix(camera.fx * 1.03, camera.fy * 0.98, camera.cx + 6.0, camera.cy - 4.0)
        config = CalibrationConfig(camera_matrix_guess=guess, use_intrinsic_guess=True, criteria=LONG_RUN)
        result = calibrate_camera(rig_views, image_size, config)
        np.testing.assert_allclose(result.camera_matrix.as_array(), camera.as_array(), rtol=1e-5)
        np.testing.assert_allclose(result.dist_coeffs.values, distortion.values, atol=1e-5)

    def test_three_dimensional_rig_needs_guess(self, rig_views, image_size):
        with pytest.raises(InsufficientViewsError):
            calibrate_camera(rig_views, image_size)

    def test_threaded_evaluation_gives_same_result(self, noisy_views, image_size):
        inline = calibrate_camera(noisy_views, image_size)
        threaded = calibrate_camera(noisy_views, image_size, CalibrationConfig(max_workers=3))
        np.testing.assert_array_equal(
            threaded.camera_matrix.as_array(), inline.camera_matrix.as_array()
        )
        np.testing.assert_array_equal(threaded.dist_coeffs.values, inline.dist_coeffs.values)

    def test_lu_solver(self, views, camera, image_size):
        result = calibrate_camera(views, image_size, CalibrationConfig(use_lu=True, criteria=LONG_RUN))
        np.testing.assert_allclose(result.camera_matrix.as_array(), camera.as_array(), rtol=1e-6)


class TestConstraints:
    def test_fixed_aspect_ratio_defaults_to_square_pixels(self, noisy_views, image_size):
        result = calibrate_camera(noisy_views, image_size, CalibrationConfig(fix_aspect_ratio=True))
        assert result.camera_matrix.fx == pytest.approx(result.camera_matrix.fy, rel=1e-12)

    def test_fixed_aspect_ratio_from_guess(self, views, camera, image_size):
        guess = CameraMatrix(1.0 * camera.aspect_ratio, 1.0, 0.0, 0.0)
        config = CalibrationConfig(fix_aspect_ratio=True, camera_matrix_guess=guess, criteria=LONG_RUN)
        result = calibrate_camera(views, image_size, config)
        K = result.camera_matrix
        assert K.fx / K.fy == pytest.approx(camera.aspect_ratio, rel=1e-12)
        np.testing.assert_allclose(K.as_array(), camera.as_array(), rtol=1e-6)

    def test_fixed_principal_point(self, noisy_views, image_size):
        result = calibrate_camera(noisy_views, image_size, CalibrationConfig(fix_principal_point=True))
        assert (result.camera_matrix.cx, result.camera_matrix.cy) == image_center(image_size)

    def test_zero_tangent_distortion(self, noisy_views, image_size):
        result = calibrate_camera(noisy_views, image_size, CalibrationConfig(zero_tangent_dist=True))
        assert result.dist_coeffs.p1 == 0.0
        assert result.dist_coeffs.p2 == 0.0

    def test_fixed_coefficient_keeps_supplied_value(self, noisy_views, image_size):
        config = CalibrationConfig(fix_k3=True, dist_coeffs_guess=[0.0, 0.0, 0.0, 0.0, -0.015])
        result = calibrate_camera(noisy_views, image_size, config)
        assert result.dist_coeffs.k3 == -0.015
        assert result.dist_coeffs.k1 != 0.0

    @pytest.mark.parametrize(
        "options, length",
        [
            ({}, 5),
            ({"rational_model": True}, 8),
            ({"thin_prism_model": True}, 12),
            ({"tilted_model": True}, 14),
            ({"rational_model": True, "thin_prism_model": True, "tilted_model": True}, 14),
        ],
    )
    def test_distortion_model_length(self, views, image_size, options, length):
        result = calibrate_camera(views, image_size, CalibrationConfig(**options))
        assert len(result.dist_coeffs) == length
        assert np.all(np.isfinite(result.dist_coeffs.values))
        assert result.reprojection_error < result.initial_error

    def test_disabled_groups_stay_zero(self, views, image_size):
        result = calibrate_camera(views, image_size, CalibrationConfig(tilted_model=True))
        assert not np.any(result.dist_coeffs.values[5:12])


class TestErrors:
    def test_no_views(self, image_size):
        with pytest.raises(InsufficientViewsError):
            calibrate_camera([], image_size)

    def test_single_planar_view_needs_guess(self, views, image_size):
        with pytest.raises(InsufficientViewsError, match="use_intrinsic_guess"):
            calibrate_camera(views[:1], image_size)

    @pytest.mark.parametrize("size", [(0, 480), (640, -1), (640,), "640x480"])
    def test_bad_image_size(self, views, size):
        with pytest.raises(InvalidParameterError):
            calibrate_camera(views, size)

    def test_mismatched_view(self, board, image_size):
        with pytest.raises(InvalidParameterError):
            calibrate_camera([(board, board[:-2, :2])], image_size)

    def test_negative_focal_guess(self, views, image_size):
        config = CalibrationConfig(
            camera_matrix_guess=CameraMatrix(-800.0, 800.0, 320.0, 240.0), use_intrinsic_guess=True
        )
        with pytest.raises(InvalidParameterError):
            calibrate_camera(views, image_size, config)

    def test_principal_point_outside_image(self, views, image_size):
        config = CalibrationConfig(
            camera_matrix_guess=CameraMatrix(800.0, 800.0, 900.0, 240.0), use_intrinsic_guess=True
        )
        with pytest.raises(InvalidParameterError):
            calibrate_camera(views, image_size, config)

    def test_pose_failure_names_view(self, views, image_size):
        class Failing:
            def solve(self, view, camera_matrix, dist_coeffs):
                raise PoseEstimationError("no pose")

        with pytest.raises(PoseEstimationError) as excinfo:
            calibrate_camera(views, image_size, pose_solver=Failing())
        assert excinfo.value.view_index == 0

    def test_iteration_limit_warns(self, noisy_views, image_size):
        config = CalibrationConfig(criteria=TermCriteria(max_count=1))
        with pytest.warns(DidNotConverge):
            result = calibrate_camera(noisy_views, image_size, config)
        assert result.status is TerminationStatus.MAX_ITERATIONS_REACHED
        assert not result.converged


class TestCameraCalibrator:
    def test_collects_views(self, views, board, image_size):
        calibrator = CameraCalibrator()
        assert not calibrator.can_calibrate
        calibrator.add_view(views[0])
        calibrator.add_view(views[1].object_points, views[1].image_points)
        calibrator.add_views([(v.object_points, v.image_points) for v in views[2:]])
        assert calibrator.num_views == len(views)
        assert all(isinstance(v, View) for v in calibrator.views)

        calibrator.clear()
        assert calibrator.num_views == 0
        with pytest.raises(InsufficientViewsError):
            calibrator.calibrate(image_size)

    def test_add_view_needs_image_points(self, board):
        with pytest.raises(InvalidParameterError):
            CameraCalibrator().add_view(board)

    def test_progress_callback(self, views, image_size):
        calls = []
        calibrator = CameraCalibrator()
        calibrator.add_views(views)
        calibrator.calibrate(image_size, progress_callback=lambda cur, total, msg: calls.append((cur, total, msg)))
        assert calls[0][0] == 0
        assert calls[-1] == (100, 100, "Calibration complete")
        assert [c[0] for c in calls] == sorted(c[0] for c in calls)

    def test_initial_distortion_guess_with_intrinsic_guess(self, views, camera, distortion, image_size):
        config = CalibrationConfig(
            camera_matrix_guess=camera,
            dist_coeffs_guess=distortion,
            use_intrinsic_guess=True,
        )
        calibrator = CameraCalibrator(config)
        calibrator.add_views(views)
        result = calibrator.calibrate(image_size)
        assert result.initial_error == pytest.approx(0.0, abs=1e-6)
        np.testing.assert_allclose(result.dist_coeffs.values, distortion.values, atol=1e-7)
