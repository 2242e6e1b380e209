"""
Tests for rigcalib.core.pose.
"""

import numpy as np
import pytest

from rigcalib.core.pose import HomographyPoseSolver, PnPPoseSolver, estimate_poses
from rigcalib.core.types import DistortionCoefficients, Pose, PoseEstimationError, View


def _assert_pose_close(actual, expected, atol=1e-5):
    np.testing.assert_allclose(actual.rotation_matrix, expected.rotation_matrix, atol=atol)
    np.testing.assert_allclose(actual.translation_vector, expected.translation_vector, atol=atol)


class TestPnPPoseSolver:
    def test_planar_view(self, views, poses, camera, distortion):
        pose = PnPPoseSolver().solve(views[0], camera, distortion)
        _assert_pose_close(pose, poses[0])

    def test_three_dimensional_rig(self, sample_points, sample_pose, camera, distortion):
        from rigcalib.synthetic import make_views

        view = make_views(sample_points, [sample_pose], camera, distortion)[0]
        pose = PnPPoseSolver().solve(view, camera, distortion)
        _assert_pose_close(pose, sample_pose)

    def test_collinear_rig(self, camera):
        obj = np.column_stack([np.arange(6.0), np.zeros(6), np.zeros(6)])
        img = np.column_stack([np.arange(6.0) * 10 + 100, np.full(6, 200.0)])
        with pytest.raises(PoseEstimationError, match="collinear"):
            PnPPoseSolver().solve(View(obj, img), camera, DistortionCoefficients.zeros())


class TestHomographyPoseSolver:
    def test_planar_view(self, views, poses, camera, distortion):
        for view, expected in zip(views, poses):
            _assert_pose_close(HomographyPoseSolver().solve(view, camera, distortion), expected, atol=1e-4)

    def test_rejects_non_planar(self, sample_points, sample_pose, camera):
        from rigcalib.synthetic import make_views

        view = make_views(sample_points, [sample_pose], camera)[0]
        with pytest.raises(PoseEstimationError, match="planar"):
            HomographyPoseSolver().solve(view, camera, DistortionCoefficients.zeros())


class _FailingSolver:
    def __init__(self, fail_at):
        self.fail_at = fail_at
        self.calls = 0

    def solve(self, view, camera_matrix, dist_coeffs):
        index = self.calls
        self.calls += 1
        if index == self.fail_at:
            raise PoseEstimationError("stub failure")
        return Pose(np.zeros(3), np.array([0.0, 0.0, 1.0]))


class TestEstimatePoses:
    def test_one_pose_per_view(self, views, poses, camera, distortion):
        estimated = estimate_poses(views, camera, distortion)
        assert len(estimated) == len(views)
        for actual, expected in zip(estimated, poses):
            _assert_pose_close(actual, expected)

    def test_failure_names_the_view(self, views, camera, distortion):
        with pytest.raises(PoseEstimationError) as excinfo:
            estimate_poses(views, camera, distortion, solver=_FailingSolver(fail_at=2))
        assert excinfo.value.view_index == 2
        assert "view 2" in str(excinfo.value)
