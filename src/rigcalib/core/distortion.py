"""
Projection through the pinhole + lens distortion model.

A rig point X is moved into the camera frame by its view pose
(``Xc = R X + t``), normalized by depth, distorted, and mapped to pixels::

    x, y   = Xc / Zc, Yc / Zc
    r2     = x^2 + y^2
    radial = (1 + k1 r2 + k2 r4 + k3 r6) / (1 + k4 r2 + k5 r4 + k6 r6)
    x'     = x radial + 2 p1 x y + p2 (r2 + 2 x^2) + s1 r2 + s2 r4
    y'     = y radial + p1 (r2 + 2 y^2) + 2 p2 x y + s3 r2 + s4 r4
    x", y" = tilted-sensor projection of (x', y') by tauX, tauY
    u, v   = fx x" + cx, fy y" + cy

Which groups are evaluated follows the coefficient count: 4/5 entries give
radial + tangential, 8 add the rational denominator, 12 the thin prism
terms and 14 the sensor tilt.

All partial derivatives are analytic and vectorized over the points.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import cv2
import numpy as np
from numpy.typing import ArrayLike, NDArray

from rigcalib.core.types import CameraMatrix, DistortionCoefficients, Pose

# Magnitude floors for the three divisors of the model. Values closer to zero
# are clamped (sign preserved), so points far outside the valid domain of the
# model give large but finite predictions.
DEPTH_FLOOR = 1e-12
RADIAL_DIVISOR_FLOOR = 1e-6
TILT_DIVISOR_FLOOR = 1e-12

CameraLike = Union[CameraMatrix, ArrayLike]
DistortionLike = Union[DistortionCoefficients, ArrayLike, None]


@dataclass
class ProjectionJacobian:
    """Partial derivatives of the projected pixels, per point.

    Every array has shape (N, 2, k): point, pixel coordinate (u, v), parameter.

    Attributes:
        intrinsics: w.r.t. fx, fy, cx, cy.
        distortion: w.r.t. all 14 distortion coefficients; columns past the
            length of the evaluated vector are zero.
        rotation: w.r.t. the Rodrigues rotation vector.
        translation: w.r.t. the translation vector.
    """
    intrinsics: NDArray[np.float64]
    distortion: NDArray[np.float64]
    rotation: NDArray[np.float64]
    translation: NDArray[np.float64]

    @property
    def pose(self) -> NDArray[np.float64]:
        """(N, 2, 6) derivatives w.r.t. [rvec, tvec]."""
        return np.concatenate([self.rotation, self.translation], axis=2)

    def intrinsic_block(self, n_dist: int) -> NDArray[np.float64]:
        """(2N, 4 + n_dist) rows ordered u0, v0, u1, v1, ..."""
        block = np.concatenate([self.intrinsics, self.distortion[:, :, :n_dist]], axis=2)
        return block.reshape(-1, block.shape[2])

    def pose_block(self) -> NDArray[np.float64]:
        """(2N, 6) rows ordered u0, v0, u1, v1, ..."""
        return self.pose.reshape(-1, 6)


def _clamp_away_from_zero(values: NDArray[np.float64], floor: float) -> NDArray[np.float64]:
    small = np.abs(values) < floor
    if not np.any(small):
        return values
    return np.where(small, np.where(values < 0.0, -floor, floor), values)


def _as_camera(camera_matrix: CameraLike) -> CameraMatrix:
    if isinstance(camera_matrix, CameraMatrix):
        return camera_matrix
    return CameraMatrix.from_matrix(camera_matrix)


def _as_distortion(dist_coeffs: DistortionLike) -> DistortionCoefficients:
    if dist_coeffs is None:
        return DistortionCoefficients.zeros(5)
    if isinstance(dist_coeffs, DistortionCoefficients):
        return dist_coeffs
    return DistortionCoefficients(dist_coeffs)


def tilt_projection_matrix(
    tau_x: float,
    tau_y: float,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Tilted-sensor projection matrix and its derivatives.

    The sensor is rotated by tauY about y after tauX about x; the matrix maps
    normalized image coordinates onto the tilted sensor plane, rescaled so the
    optical axis keeps its position.

    Returns:
        (M, dM/dtauX, dM/dtauY), each 3x3.
    """
    c_x, s_x = np.cos(tau_x), np.sin(tau_x)
    c_y, s_y = np.cos(tau_y), np.sin(tau_y)

    rot_x = np.array([[1.0, 0.0, 0.0], [0.0, c_x, s_x], [0.0, -s_x, c_x]])
    rot_y = np.array([[c_y, 0.0, -s_y], [0.0, 1.0, 0.0], [s_y, 0.0, c_y]])
    d_rot_x = np.array([[0.0, 0.0, 0.0], [0.0, -s_x, c_x], [0.0, -c_x, -s_x]])
    d_rot_y = np.array([[-s_y, 0.0, -c_y], [0.0, 0.0, 0.0], [c_y, 0.0, -s_y]])

    rot_xy = rot_y @ rot_x
    d_rot_xy_x = rot_y @ d_rot_x
    d_rot_xy_y = d_rot_y @ rot_x

    def proj_z(r: NDArray[np.float64], homogeneous: float) -> NDArray[np.float64]:
        return np.array([
            [r[2, 2], 0.0, -r[0, 2]],
            [0.0, r[2, 2], -r[1, 2]],
            [0.0, 0.0, homogeneous],
        ])

    p = proj_z(rot_xy, 1.0)
    dp_x = proj_z(d_rot_xy_x, 0.0)
    dp_y = proj_z(d_rot_xy_y, 0.0)

    m = p @ rot_xy
    dm_x = p @ d_rot_xy_x + dp_x @ rot_xy
    dm_y = p @ d_rot_xy_y + dp_y @ rot_xy
    return m, dm_x, dm_y


def _project(
    object_points: ArrayLike,
    pose: Pose,
    camera_matrix: CameraLike,
    dist_coeffs: DistortionLike,
    with_jacobian: bool,
) -> tuple[NDArray[np.float64], ProjectionJacobian | None]:
    obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    K = _as_camera(camera_matrix)
    D = _as_distortion(dist_coeffs)
    n_dist = len(D)
    rational = n_dist >= 8
    thin_prism = n_dist >= 12
    tilted = n_dist >= 14
    k1, k2, p1, p2, k3, k4, k5, k6, s1, s2, s3, s4, tau_x, tau_y = D.padded()

    R, dR = cv2.Rodrigues(pose.rotation_vector)
    Xc = obj @ R.T + pose.translation_vector

    inv_z = 1.0 / _clamp_away_from_zero(Xc[:, 2], DEPTH_FLOOR)
    x = Xc[:, 0] * inv_z
    y = Xc[:, 1] * inv_z

    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2
    a1 = 2.0 * x * y
    a2 = r2 + 2.0 * x * x
    a3 = r2 + 2.0 * y * y

    cdist = 1.0 + k1 * r2 + k2 * r4 + k3 * r6
    if rational:
        icdist2 = 1.0 / _clamp_away_from_zero(
            1.0 + k4 * r2 + k5 * r4 + k6 * r6, RADIAL_DIVISOR_FLOOR
        )
    else:
        icdist2 = np.ones_like(r2)
    radial = cdist * icdist2

    xd0 = x * radial + p1 * a1 + p2 * a2
    yd0 = y * radial + p1 * a3 + p2 * a1
    if thin_prism:
        xd0 = xd0 + s1 * r2 + s2 * r4
        yd0 = yd0 + s3 * r2 + s4 * r4

    if tilted:
        m, dm_x, dm_y = tilt_projection_matrix(tau_x, tau_y)
        homog = np.stack([xd0, yd0, np.ones_like(xd0)], axis=1)
        vec = homog @ m.T
        inv_w = 1.0 / _clamp_away_from_zero(vec[:, 2], TILT_DIVISOR_FLOOR)
        xd = vec[:, 0] * inv_w
        yd = vec[:, 1] * inv_w
    else:
        xd, yd = xd0, yd0

    points = np.stack([K.fx * xd + K.cx, K.fy * yd + K.cy], axis=1)
    if not with_jacobian:
        return points, None

    n = len(obj)

    # d(x', y') / d(x, y) before the tilt
    if rational:
        drad_dr2 = (
            (k1 + 2.0 * k2 * r2 + 3.0 * k3 * r4) * icdist2
            - cdist * icdist2 * icdist2 * (k4 + 2.0 * k5 * r2 + 3.0 * k6 * r4)
        )
    else:
        drad_dr2 = k1 + 2.0 * k2 * r2 + 3.0 * k3 * r4
    prism_x = 2.0 * (s1 + 2.0 * s2 * r2) if thin_prism else 0.0
    prism_y = 2.0 * (s3 + 2.0 * s4 * r2) if thin_prism else 0.0

    d_xy = np.empty((n, 2, 2))
    d_xy[:, 0, 0] = radial + 2.0 * x * x * drad_dr2 + 2.0 * y * p1 + 6.0 * x * p2 + x * prism_x
    d_xy[:, 0, 1] = 2.0 * x * y * drad_dr2 + 2.0 * x * p1 + 2.0 * y * p2 + y * prism_x
    d_xy[:, 1, 0] = 2.0 * x * y * drad_dr2 + 2.0 * x * p1 + 2.0 * y * p2 + x * prism_y
    d_xy[:, 1, 1] = radial + 2.0 * y * y * drad_dr2 + 6.0 * y * p1 + 2.0 * x * p2 + y * prism_y

    # d(x', y') / d(distortion)
    d_dist = np.zeros((n, 2, 14))
    xy = np.stack([x, y], axis=1)
    d_dist[:, :, 0] = xy * (r2 * icdist2)[:, None]
    d_dist[:, :, 1] = xy * (r4 * icdist2)[:, None]
    d_dist[:, :, 2] = np.stack([a1, a3], axis=1)
    d_dist[:, :, 3] = np.stack([a2, a1], axis=1)
    d_dist[:, :, 4] = xy * (r6 * icdist2)[:, None]
    if rational:
        scale = -cdist * icdist2 * icdist2
        d_dist[:, :, 5] = xy * (scale * r2)[:, None]
        d_dist[:, :, 6] = xy * (scale * r4)[:, None]
        d_dist[:, :, 7] = xy * (scale * r6)[:, None]
    if thin_prism:
        d_dist[:, 0, 8] = r2
        d_dist[:, 0, 9] = r4
        d_dist[:, 1, 10] = r2
        d_dist[:, 1, 11] = r4

    if tilted:
        # Chain through the projective tilt: (x", y") = (v0, v1) / v2
        tilt = np.empty((n, 2, 2))
        tilt[:, 0, 0] = (m[0, 0] - xd * m[2, 0]) * inv_w
        tilt[:, 0, 1] = (m[0, 1] - xd * m[2, 1]) * inv_w
        tilt[:, 1, 0] = (m[1, 0] - yd * m[2, 0]) * inv_w
        tilt[:, 1, 1] = (m[1, 1] - yd * m[2, 1]) * inv_w
        d_xy = tilt @ d_xy
        d_dist = tilt @ d_dist
        for col, dm in ((12, dm_x), (13, dm_y)):
            dvec = homog @ dm.T
            d_dist[:, 0, col] = (dvec[:, 0] - xd * dvec[:, 2]) * inv_w
            d_dist[:, 1, col] = (dvec[:, 1] - yd * dvec[:, 2]) * inv_w

    focal = np.array([K.fx, K.fy])[None, :, None]
    d_dist *= focal

    d_intr = np.zeros((n, 2, 4))
    d_intr[:, 0, 0] = xd
    d_intr[:, 1, 1] = yd
    d_intr[:, 0, 2] = 1.0
    d_intr[:, 1, 3] = 1.0

    # d(x, y) / d(Xc)
    d_norm = np.zeros((n, 2, 3))
    d_norm[:, 0, 0] = inv_z
    d_norm[:, 1, 1] = inv_z
    d_norm[:, 0, 2] = -x * inv_z
    d_norm[:, 1, 2] = -y * inv_z

    d_camera = focal * (d_xy @ d_norm)  # d(u, v) / d(Xc) == d(u, v) / d(t)

    # cv2.Rodrigues gives dR[i, 3r + c] = d R[r, c] / d rvec[i]
    dR = dR.reshape(3, 3, 3)
    d_xc_drvec = np.einsum("irc,nc->nri", dR, obj)
    d_rot = d_camera @ d_xc_drvec

    return points, ProjectionJacobian(
        intrinsics=d_intr,
        distortion=d_dist,
        rotation=d_rot,
        translation=d_camera,
    )


def project_points(
    object_points: ArrayLike,
    pose: Pose,
    camera_matrix: CameraLike,
    dist_coeffs: DistortionLike = None,
) -> NDArray[np.float64]:
    """Project rig points into the image.

    Args:
        object_points: (N, 3) rig coordinates.
        pose: View pose (rig to camera).
        camera_matrix: CameraMatrix or 3x3 array.
        dist_coeffs: DistortionCoefficients, a 4/5/8/12/14 vector, or None.

    Returns:
        (N, 2) pixel coordinates.
    """
    points, _ = _project(object_points, pose, camera_matrix, dist_coeffs, with_jacobian=False)
    return points


def project_points_with_jacobian(
    object_points: ArrayLike,
    pose: Pose,
    camera_matrix: CameraLike,
    dist_coeffs: DistortionLike = None,
) -> tuple[NDArray[np.float64], ProjectionJacobian]:
    """Project rig points and return the partial derivatives as well.

    See :func:`project_points` for the arguments.

    Returns:
        ((N, 2) pixel coordinates, ProjectionJacobian).
    """
    points, jacobian = _project(object_points, pose, camera_matrix, dist_coeffs, with_jacobian=True)
    assert jacobian is not None
    return points, jacobian
