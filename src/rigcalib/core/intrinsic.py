"""
Closed-form intrinsic initialization from planar homographies.

Zhang's method: every homography H = [h1 h2 h3] of a planar view satisfies

    h1^T B h2 = 0,    h1^T B h1 - h2^T B h2 = 0,    B = K^-T K^-1

which is linear in the entries of the symmetric matrix B. With zero skew
(B12 = 0) and B normalized by B33 = 1, two or more views determine B in the
least-squares sense. K follows from the Cholesky factor of B.

The homographies are first expressed in normalized image coordinates (origin
at the image center or at the fixed principal point, unit ~ image size) to
keep the system well conditioned.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from rigcalib.core.homography import view_homography
from rigcalib.core.solvers import LinearSolver, SVDSolver
from rigcalib.core.types import (
    CameraMatrix,
    DegenerateGeometryError,
    InsufficientViewsError,
    InvalidParameterError,
    View,
)
from rigcalib.utils.logging import get_logger

logger = get_logger("core.intrinsic")

# Minimum number of planar views for a closed-form estimate
MIN_VIEWS_FOR_INIT = 2

# Relative singular value below which the stacked constraints are rank deficient
RANK_TOLERANCE = 1e-12

# Column order of the constraint rows
_B11, _B12, _B22, _B13, _B23, _B33 = range(6)


def _constraint_row(H: NDArray[np.float64], i: int, j: int) -> NDArray[np.float64]:
    """Coefficients of h_i^T B h_j in [B11, B12, B22, B13, B23, B33]."""
    return np.array([
        H[0, i] * H[0, j],
        H[0, i] * H[1, j] + H[1, i] * H[0, j],
        H[1, i] * H[1, j],
        H[2, i] * H[0, j] + H[0, i] * H[2, j],
        H[2, i] * H[1, j] + H[1, i] * H[2, j],
        H[2, i] * H[2, j],
    ])


def image_center(image_size: tuple[int, int]) -> tuple[float, float]:
    """Pixel-center convention: ((w - 1) / 2, (h - 1) / 2)."""
    width, height = image_size
    return (width - 1) * 0.5, (height - 1) * 0.5


def init_camera_matrix(
    homographies: Sequence[NDArray[np.float64]],
    image_size: tuple[int, int],
    aspect_ratio: Optional[float] = None,
    principal_point: Optional[tuple[float, float]] = None,
    solver: Optional[LinearSolver] = None,
) -> CameraMatrix:
    """Estimate the camera matrix from planar homographies.

    Args:
        homographies: One 3x3 homography per planar view.
        image_size: (width, height) in pixels.
        aspect_ratio: If given, fx / fy is held at this value and fx, fy
            collapse to a single unknown.
        principal_point: If given, (cx, cy) is pinned here and excluded from
            the solve.
        solver: Linear solver strategy (SVD by default).

    Returns:
        Initial CameraMatrix.

    Raises:
        InsufficientViewsError: Fewer than two homographies.
        DegenerateGeometryError: The views do not constrain the intrinsics
            (e.g. all rig planes parallel) or the estimate is not a valid
            camera.
    """
    if len(homographies) < MIN_VIEWS_FOR_INIT:
        raise InsufficientViewsError(
            f"closed-form intrinsic initialization needs at least "
            f"{MIN_VIEWS_FOR_INIT} planar views, got {len(homographies)}; "
            f"supply an initial camera matrix with use_intrinsic_guess instead"
        )
    width, height = image_size
    if width <= 0 or height <= 0:
        raise InvalidParameterError(f"image size must be positive, got {image_size}")
    if aspect_ratio is not None and not aspect_ratio > 0:
        raise InvalidParameterError(f"aspect ratio must be positive, got {aspect_ratio}")
    solver = solver or SVDSolver()

    fixed_center = principal_point is not None
    c0x, c0y = principal_point if fixed_center else image_center(image_size)
    scale = float(max(width, height))
    N = np.array([
        [1.0 / scale, 0.0, -c0x / scale],
        [0.0, 1.0 / scale, -c0y / scale],
        [0.0, 0.0, 1.0],
    ])

    rows = []
    for H in homographies:
        Hn = N @ np.asarray(H, dtype=np.float64)
        Hn /= np.linalg.norm(Hn)
        rows.append(_constraint_row(Hn, 0, 1))
        rows.append(_constraint_row(Hn, 0, 0) - _constraint_row(Hn, 1, 1))
    V = np.array(rows)

    # Unknown columns, B12 = 0 (zero skew) and B33 = 1 (scale)
    columns: list[NDArray[np.float64]] = []
    names: list[int] = []
    if aspect_ratio is not None:
        # B11 = B22 / r^2 since B11 ~ 1/fx^2, B22 ~ 1/fy^2
        columns.append(V[:, _B22] + V[:, _B11] / aspect_ratio ** 2)
        names.append(_B22)
    else:
        columns.extend([V[:, _B11], V[:, _B22]])
        names.extend([_B11, _B22])
    if not fixed_center:
        columns.extend([V[:, _B13], V[:, _B23]])
        names.extend([_B13, _B23])

    A = np.column_stack(columns)
    rhs = -V[:, _B33]

    singular = np.linalg.svd(A, compute_uv=False)
    if singular[-1] <= RANK_TOLERANCE * singular[0]:
        raise DegenerateGeometryError(
            "views do not constrain the intrinsics (rig planes parallel?)"
        )

    solution = solver.solve(A, rhs)

    b = np.zeros(6)
    b[_B33] = 1.0
    for name, value in zip(names, solution):
        b[name] = value
    if aspect_ratio is not None:
        b[_B11] = b[_B22] / aspect_ratio ** 2

    B = np.array([
        [b[_B11], b[_B12], b[_B13]],
        [b[_B12], b[_B22], b[_B23]],
        [b[_B13], b[_B23], b[_B33]],
    ])
    try:
        L = np.linalg.cholesky(B)
    except np.linalg.LinAlgError:
        raise DegenerateGeometryError(
            "homographies are inconsistent with a pinhole camera (B not positive definite)"
        ) from None

    # B = lambda K^-T K^-1 and L = sqrt(lambda) K^-T
    K = np.linalg.inv(L.T)
    K /= K[2, 2]
    K = np.linalg.solve(N, K)

    fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
    if aspect_ratio is not None:
        fx = aspect_ratio * fy
    if fixed_center:
        cx, cy = c0x, c0y

    if not (np.isfinite([fx, fy, cx, cy]).all() and fx > 0 and fy > 0):
        raise DegenerateGeometryError(f"invalid intrinsic estimate fx={fx}, fy={fy}")

    camera = CameraMatrix(fx=fx, fy=fy, cx=cx, cy=cy)
    logger.debug(
        f"Initial intrinsics from {len(homographies)} homographies: "
        f"fx={camera.fx:.3f} fy={camera.fy:.3f} cx={camera.cx:.3f} cy={camera.cy:.3f}"
    )
    return camera


def init_camera_matrix_2d(
    views: Sequence[View],
    image_size: tuple[int, int],
    aspect_ratio: Optional[float] = None,
    principal_point: Optional[tuple[float, float]] = None,
    solver: Optional[LinearSolver] = None,
) -> CameraMatrix:
    """Initial camera matrix from the planar views among ``views``.

    Non-planar views are skipped; see :func:`init_camera_matrix`.
    """
    planar = [v for v in views if v.is_planar]
    if len(planar) < len(views):
        logger.info(f"Skipping {len(views) - len(planar)} non-planar views for initialization")
    if len(planar) < MIN_VIEWS_FOR_INIT:
        raise InsufficientViewsError(
            f"closed-form intrinsic initialization needs at least "
            f"{MIN_VIEWS_FOR_INIT} planar views (z = 0), got {len(planar)}; "
            f"3D rigs require an initial camera matrix with use_intrinsic_guess"
        )
    homographies = [view_homography(v) for v in planar]
    return init_camera_matrix(
        homographies,
        image_size,
        aspect_ratio=aspect_ratio,
        principal_point=principal_point,
        solver=solver,
    )
