"""
Planar homography estimation.

Direct linear transform on Hartley-normalized coordinates: each
correspondence contributes two rows to a 2n x 9 system whose null vector,
taken from the SVD, is the homography.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

from rigcalib.core.types import PLANARITY_TOLERANCE, DegenerateGeometryError, View

MIN_HOMOGRAPHY_POINTS = 4

# Ratio of smallest to largest singular value below which a point set is
# treated as collinear
COLLINEARITY_TOLERANCE = 1e-9

# Relative gap required between the two smallest singular values of the DLT
# system for its null space to be one-dimensional
NULL_SPACE_TOLERANCE = 1e-12


def _normalization(points: NDArray[np.float64], label: str) -> NDArray[np.float64]:
    """Similarity moving the centroid to the origin, mean distance sqrt(2)."""
    centroid = points.mean(axis=0)
    centered = points - centroid

    singular = np.linalg.svd(centered, compute_uv=False)
    if singular[0] <= 0.0 or singular[1] / singular[0] < COLLINEARITY_TOLERANCE:
        raise DegenerateGeometryError(f"{label} points are collinear")

    mean_dist = np.mean(np.sqrt(np.sum(centered ** 2, axis=1)))
    s = np.sqrt(2.0) / mean_dist
    return np.array([
        [s, 0.0, -s * centroid[0]],
        [0.0, s, -s * centroid[1]],
        [0.0, 0.0, 1.0],
    ])


def _apply(T: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    return points @ T[:2, :2].T + T[:2, 2]


def find_homography(object_points: ArrayLike, image_points: ArrayLike) -> NDArray[np.float64]:
    """Estimate the homography mapping rig-plane coordinates to pixels.

    Args:
        object_points: (N, 3) rig points with z ~ 0, or (N, 2) plane points.
        image_points: (N, 2) pixel coordinates.

    Returns:
        3x3 homography H with H[2, 2] == 1, so that
        ``[u, v, 1] ~ H @ [X, Y, 1]``.

    Raises:
        DegenerateGeometryError: Fewer than 4 points, non-planar object
            points, collinear points, or an underdetermined system.
    """
    obj = np.asarray(object_points, dtype=np.float64)
    img = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
    obj = obj.reshape(len(img), -1)

    if obj.shape[1] == 3:
        z = obj[:, 2]
        if abs(z.mean()) > PLANARITY_TOLERANCE or z.std() > PLANARITY_TOLERANCE:
            raise DegenerateGeometryError("object points are not on the z = 0 plane")
        obj = obj[:, :2]
    elif obj.shape[1] != 2:
        raise DegenerateGeometryError(f"object points must be 2D or 3D, got {obj.shape}")

    n = len(img)
    if n < MIN_HOMOGRAPHY_POINTS:
        raise DegenerateGeometryError(
            f"need at least {MIN_HOMOGRAPHY_POINTS} points for a homography, got {n}"
        )

    T_obj = _normalization(obj, "object")
    T_img = _normalization(img, "image")
    X = _apply(T_obj, obj)
    u = _apply(T_img, img)

    A = np.zeros((2 * n, 9))
    ones = np.ones(n)
    A[0::2, 0:3] = np.column_stack([-X[:, 0], -X[:, 1], -ones])
    A[0::2, 6:9] = np.column_stack([u[:, 0] * X[:, 0], u[:, 0] * X[:, 1], u[:, 0]])
    A[1::2, 3:6] = np.column_stack([-X[:, 0], -X[:, 1], -ones])
    A[1::2, 6:9] = np.column_stack([u[:, 1] * X[:, 0], u[:, 1] * X[:, 1], u[:, 1]])

    _, singular, Vt = np.linalg.svd(A)
    if len(singular) < 9:
        # Only possible with exactly 4 points: 8 rows, the null space is the 9th row of Vt
        singular = np.concatenate([singular, np.zeros(9 - len(singular))])
    if singular[7] <= NULL_SPACE_TOLERANCE * singular[0]:
        raise DegenerateGeometryError("homography is underdetermined (rank-deficient system)")

    Hn = Vt[-1].reshape(3, 3)
    H = np.linalg.solve(T_img, Hn @ T_obj)

    if abs(H[2, 2]) < 1e-12 * np.abs(H).max():
        raise DegenerateGeometryError("homography maps the rig origin to infinity")
    return H / H[2, 2]


def view_homography(view: View) -> NDArray[np.float64]:
    """Homography of a planar calibration view."""
    return find_homography(view.object_points, view.image_points)
