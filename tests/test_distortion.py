"""
Tests for rigcalib.core.distortion.
"""

import cv2
import numpy as np
import pytest

from rigcalib.core.distortion import (
    project_points,
    project_points_with_jacobian,
    tilt_projection_matrix,
)
from rigcalib.core.types import CameraMatrix, DistortionCoefficients, Pose

FULL_MODEL = np.array([
    -0.18, 0.07, 0.0015, -0.0009, -0.02,   # k1 k2 p1 p2 k3
    0.03, -0.01, 0.004,                   # k4 k5 k6
    0.0012, -0.0007, 0.0009, 0.0004,      # s1..s4
    0.01, -0.015,                         # tauX tauY
])


def _cv_project(points, pose, camera, dist):
    projected, _ = cv2.projectPoints(
        points.reshape(-1, 1, 3),
        pose.rotation_vector,
        pose.translation_vector,
        camera.matrix,
        np.asarray(dist, dtype=np.float64),
    )
    return projected.reshape(-1, 2)


class TestProjectPoints:
    @pytest.mark.parametrize("length", [4, 5, 8, 12, 14])
    def test_matches_opencv(self, sample_points, sample_pose, camera, length):
        dist = FULL_MODEL[:length]
        ours = project_points(sample_points, sample_pose, camera, dist)
        theirs = _cv_project(sample_points, sample_pose, camera, dist)
        np.testing.assert_allclose(ours, theirs, atol=1e-6)

    def test_without_distortion(self, sample_points, sample_pose, camera):
        ours = project_points(sample_points, sample_pose, camera)
        Xc = sample_pose.transform(sample_points)
        expected = np.column_stack([
            camera.fx * Xc[:, 0] / Xc[:, 2] + camera.cx,
            camera.fy * Xc[:, 1] / Xc[:, 2] + camera.cy,
        ])
        np.testing.assert_allclose(ours, expected)

    def test_accepts_matrix_and_array(self, sample_points, sample_pose, camera):
        a = project_points(sample_points, sample_pose, camera, DistortionCoefficients(FULL_MODEL[:5]))
        b = project_points(sample_points, sample_pose, camera.matrix, FULL_MODEL[:5])
        np.testing.assert_array_equal(a, b)

    def test_zero_depth_stays_finite(self, camera):
        pose = Pose(rotation_vector=np.zeros(3), translation_vector=np.zeros(3))
        points = np.array([[0.1, 0.1, 0.0], [0.1, -0.2, 1.0]])
        projected = project_points(points, pose, camera)
        assert np.all(np.isfinite(projected))

    def test_vanishing_rational_divisor_stays_finite(self, camera):
        pose = Pose(rotation_vector=np.zeros(3), translation_vector=np.zeros(3))
        # x = 0.5, y = 0 gives r2 = 0.25, so 1 + k4 * r2 == 0
        points = np.array([[0.5, 0.0, 1.0], [0.1, 0.1, 1.0], [0.0, 0.2, 1.0], [0.3, 0.3, 1.0]])
        dist = [0.0, 0.0, 0.0, 0.0, 0.0, -4.0, 0.0, 0.0]
        projected, jacobian = project_points_with_jacobian(points, pose, camera, dist)
        assert np.all(np.isfinite(projected))
        assert np.all(np.isfinite(jacobian.intrinsic_block(8)))


class TestTiltProjectionMatrix:
    def test_identity_without_tilt(self):
        m, _, _ = tilt_projection_matrix(0.0, 0.0)
        np.testing.assert_allclose(m, np.eye(3), atol=1e-15)

    def test_derivatives(self):
        tau_x, tau_y, h = 0.05, -0.08, 1e-7
        _, dm_x, dm_y = tilt_projection_matrix(tau_x, tau_y)
        fd_x = (tilt_projection_matrix(tau_x + h, tau_y)[0] - tilt_projection_matrix(tau_x - h, tau_y)[0]) / (2 * h)
        fd_y = (tilt_projection_matrix(tau_x, tau_y + h)[0] - tilt_projection_matrix(tau_x, tau_y - h)[0]) / (2 * h)
        np.testing.assert_allclose(dm_x, fd_x, atol=1e-7)
        np.testing.assert_allclose(dm_y, fd_y, atol=1e-7)


class TestJacobian:
    STEP = 1e-6

    def _numeric(self, f, x0):
        """Central differences of f (returning (N, 2)) w.r.t. vector x0."""
        columns = []
        for i in range(len(x0)):
            step = np.zeros_like(x0)
            step[i] = self.STEP
            columns.append((f(x0 + step) - f(x0 - step)) / (2 * self.STEP))
        return np.stack(columns, axis=2)

    @pytest.mark.parametrize("length", [5, 8, 12, 14])
    def test_matches_finite_differences(self, sample_points, sample_pose, camera, length):
        dist = FULL_MODEL[:length]
        _, jac = project_points_with_jacobian(sample_points, sample_pose, camera, dist)

        intr = self._numeric(
            lambda k: project_points(sample_points, sample_pose, CameraMatrix(*k), dist),
            camera.as_array(),
        )
        d_dist = self._numeric(
            lambda d: project_points(sample_points, sample_pose, camera, d),
            dist.copy(),
        )
        rot = self._numeric(
            lambda r: project_points(
                sample_points, Pose(r, sample_pose.translation_vector), camera, dist
            ),
            sample_pose.rotation_vector.copy(),
        )
        trans = self._numeric(
            lambda t: project_points(
                sample_points, Pose(sample_pose.rotation_vector, t), camera, dist
            ),
            sample_pose.translation_vector.copy(),
        )

        np.testing.assert_allclose(jac.intrinsics, intr, rtol=1e-5, atol=1e-5)
        np.testing.assert_allclose(jac.distortion[:, :, :length], d_dist, rtol=1e-5, atol=1e-3)
        np.testing.assert_allclose(jac.rotation, rot, rtol=1e-5, atol=1e-3)
        np.testing.assert_allclose(jac.translation, trans, rtol=1e-5, atol=1e-3)
        assert not np.any(jac.distortion[:, :, length:])

    def test_block_layout(self, sample_points, sample_pose, camera):
        _, jac = project_points_with_jacobian(sample_points, sample_pose, camera, FULL_MODEL[:8])
        block = jac.intrinsic_block(8)
        assert block.shape == (2 * len(sample_points), 12)
        # Row 2i is u of point i, row 2i + 1 is v
        np.testing.assert_array_equal(block[1], np.concatenate([jac.intrinsics[0, 1], jac.distortion[0, 1, :8]]))
        assert jac.pose_block().shape == (2 * len(sample_points), 6)

    def test_matches_opencv_jacobian(self, sample_points, sample_pose, camera):
        dist = FULL_MODEL[:5]
        _, jac = project_points_with_jacobian(sample_points, sample_pose, camera, dist)
        _, cv_jac = cv2.projectPoints(
            sample_points.reshape(-1, 1, 3),
            sample_pose.rotation_vector,
            sample_pose.translation_vector,
            camera.matrix,
            dist,
        )
        # OpenCV columns: rvec, tvec, fx, fy, cx, cy, distortion
        np.testing.assert_allclose(jac.pose_block(), cv_jac[:, :6], rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(jac.intrinsic_block(5), cv_jac[:, 6:15], rtol=1e-6, atol=1e-6)
