"""
Per-view pose initialization.

Given the current intrinsics, each view gets an initial rig-to-camera pose
before the joint refinement starts. The solver is a strategy so the core can
run with OpenCV's PnP (default), the closed-form homography decomposition,
or a test stub.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

import cv2
import numpy as np

from rigcalib.core.homography import find_homography
from rigcalib.core.types import (
    MIN_POINTS_PER_VIEW,
    CameraMatrix,
    DegenerateGeometryError,
    DistortionCoefficients,
    Pose,
    PoseEstimationError,
    View,
)
from rigcalib.utils.logging import get_logger

logger = get_logger("core.pose")

COLLINEARITY_TOLERANCE = 1e-9

UNDISTORT_CRITERIA = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 100, 1e-14)


class PoseSolver(Protocol):
    """Capability: estimate the pose of one view from known intrinsics."""

    def solve(
        self,
        view: View,
        camera_matrix: CameraMatrix,
        dist_coeffs: DistortionCoefficients,
    ) -> Pose:
        ...


def _check_geometry(view: View) -> None:
    if view.num_points < MIN_POINTS_PER_VIEW:
        raise PoseEstimationError(
            f"need at least {MIN_POINTS_PER_VIEW} points, got {view.num_points}"
        )
    centered = view.object_points - view.object_points.mean(axis=0)
    singular = np.linalg.svd(centered, compute_uv=False)
    if singular[0] <= 0.0 or singular[1] / singular[0] < COLLINEARITY_TOLERANCE:
        raise PoseEstimationError("object points are collinear")


def _check_pose(view: View, pose: Pose) -> Pose:
    if not (np.isfinite(pose.rotation_vector).all() and np.isfinite(pose.translation_vector).all()):
        raise PoseEstimationError("pose solver returned non-finite values")
    depth = pose.transform(view.object_points)[:, 2]
    if np.median(depth) <= 0:
        raise PoseEstimationError("rig is behind the camera")
    return pose


class PnPPoseSolver:
    """Pose from ``cv2.solvePnP`` (handles planar and 3D rigs)."""

    def __init__(self, method: int = cv2.SOLVEPNP_ITERATIVE):
        self.method = method

    def solve(
        self,
        view: View,
        camera_matrix: CameraMatrix,
        dist_coeffs: DistortionCoefficients,
    ) -> Pose:
        _check_geometry(view)
        try:
            success, rvec, tvec = cv2.solvePnP(
                view.object_points.reshape(-1, 1, 3),
                view.image_points.reshape(-1, 1, 2),
                camera_matrix.matrix,
                dist_coeffs.values,
                flags=self.method,
            )
        except cv2.error as e:
            raise PoseEstimationError(f"solvePnP failed: {e}") from e

        if not success:
            raise PoseEstimationError("solvePnP failed")

        return _check_pose(view, Pose(rotation_vector=rvec, translation_vector=tvec))


class HomographyPoseSolver:
    """Closed-form pose of a planar view from K and its homography.

    Image points are undistorted with the current coefficients first; the
    rotation built from the homography columns is projected onto SO(3).
    """

    def solve(
        self,
        view: View,
        camera_matrix: CameraMatrix,
        dist_coeffs: DistortionCoefficients,
    ) -> Pose:
        _check_geometry(view)
        if not view.is_planar:
            raise PoseEstimationError("homography pose needs a planar (z = 0) view")

        K = camera_matrix.matrix
        undistorted = cv2.undistortPointsIter(
            view.image_points.reshape(-1, 1, 2), K, dist_coeffs.values, None, None, UNDISTORT_CRITERIA
        ).reshape(-1, 2)

        try:
            # Homography in normalized camera coordinates, so K is already removed
            H = find_homography(view.object_points, undistorted)
        except DegenerateGeometryError as e:
            raise PoseEstimationError(str(e)) from e

        h1, h2, h3 = H[:, 0], H[:, 1], H[:, 2]
        scale = 0.5 * (np.linalg.norm(h1) + np.linalg.norm(h2))
        if scale < 1e-12:
            raise PoseEstimationError("degenerate homography")
        # The rig must lie in front of the camera
        if h3[2] < 0:
            scale = -scale

        r1 = h1 / scale
        r2 = h2 / scale
        R = np.column_stack([r1, r2, np.cross(r1, r2)])
        U, _, Vt = np.linalg.svd(R)
        R = U @ Vt
        if np.linalg.det(R) < 0:
            U[:, 2] *= -1.0
            R = U @ Vt
        t = h3 / scale

        return _check_pose(view, Pose.from_rotation_matrix(R, t))


def estimate_poses(
    views: Sequence[View],
    camera_matrix: CameraMatrix,
    dist_coeffs: DistortionCoefficients,
    solver: Optional[PoseSolver] = None,
) -> list[Pose]:
    """Initial pose for every view.

    Raises:
        PoseEstimationError: If any view fails; the error carries its index.
    """
    solver = solver or PnPPoseSolver()
    poses = []
    for index, view in enumerate(views):
        try:
            poses.append(solver.solve(view, camera_matrix, dist_coeffs))
        except PoseEstimationError as e:
            raise PoseEstimationError(f"view {index}: {e}", view_index=index) from e
    logger.debug(f"Initialized {len(poses)} view poses with {type(solver).__name__}")
    return poses
