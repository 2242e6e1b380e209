"""
Synthetic calibration data.

Helpers to build rig point sets, camera poses looking at the rig and the
corresponding (optionally noisy) observations. Used by the tests and the
example script.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from rigcalib.core.distortion import project_points
from rigcalib.core.types import (
    CameraMatrix,
    DistortionCoefficients,
    InvalidParameterError,
    Pose,
    View,
)


def planar_grid(cols: int, rows: int, spacing: float = 1.0) -> NDArray[np.float64]:
    """Object points of a cols x rows grid on the z = 0 plane.

    Points are ordered row by row, like checkerboard corners.
    """
    if cols < 2 or rows < 2:
        raise InvalidParameterError(f"grid must be at least 2x2, got {cols}x{rows}")
    points = np.zeros((rows * cols, 3), dtype=np.float64)
    points[:, :2] = np.mgrid[0:cols, 0:rows].T.reshape(-1, 2) * spacing
    return points


def look_at_pose(
    camera_position: ArrayLike,
    target: ArrayLike,
    y_hint: ArrayLike = (0.0, 1.0, 0.0),
) -> Pose:
    """Pose of a camera at ``camera_position`` whose optical axis hits ``target``.

    Args:
        camera_position: Camera center in rig coordinates.
        target: Rig point on the optical axis.
        y_hint: Approximate image-down direction in rig coordinates.

    Returns:
        Rig-to-camera Pose.
    """
    center = np.asarray(camera_position, dtype=np.float64)
    z = np.asarray(target, dtype=np.float64) - center
    norm = np.linalg.norm(z)
    if norm == 0:
        raise InvalidParameterError("camera position and target coincide")
    z /= norm
    x = np.cross(np.asarray(y_hint, dtype=np.float64), z)
    norm = np.linalg.norm(x)
    if norm < 1e-9:
        raise InvalidParameterError("y_hint is parallel to the viewing direction")
    x /= norm
    y = np.cross(z, x)

    R = np.vstack([x, y, z])
    return Pose.from_rotation_matrix(R, -R @ center)


def make_views(
    object_points: ArrayLike,
    poses: Sequence[Pose],
    camera_matrix: CameraMatrix,
    dist_coeffs: Optional[DistortionCoefficients] = None,
    noise: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> list[View]:
    """Project the rig through every pose.

    Args:
        object_points: (N, 3) rig points shared by all views.
        poses: One pose per view.
        camera_matrix: Ground-truth intrinsics.
        dist_coeffs: Ground-truth distortion (none when omitted).
        noise: Standard deviation of Gaussian pixel noise.
        rng: Random generator for the noise.

    Returns:
        List of View objects.
    """
    object_points = np.asarray(object_points, dtype=np.float64)
    if noise > 0 and rng is None:
        rng = np.random.default_rng()
    views = []
    for pose in poses:
        image_points = project_points(object_points, pose, camera_matrix, dist_coeffs)
        if noise > 0:
            image_points = image_points + rng.normal(0.0, noise, image_points.shape)
        views.append(View(object_points, image_points))
    return views
