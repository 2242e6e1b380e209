"""
Linear solver strategies.

Both the closed-form intrinsic initialization and every Levenberg-Marquardt
step reduce to solving ``A x = b`` (in the least-squares sense when ``A`` is
tall). The decomposition is a policy choice: SVD is robust on near-singular
systems, LU is faster but loses precision there.
"""

from __future__ import annotations

from typing import Protocol

import cv2
import numpy as np
from numpy.typing import NDArray

from rigcalib.core.types import DegenerateGeometryError
from rigcalib.utils.logging import get_logger

logger = get_logger("core.solvers")

# Above this condition number the LU result is not trusted
LU_CONDITION_LIMIT = 1e12


class LinearSolver(Protocol):
    """Capability: solve ``A x = b``."""

    name: str

    def solve(self, A: NDArray[np.float64], b: NDArray[np.float64]) -> NDArray[np.float64]:
        ...


def _as_system(A: NDArray[np.float64], b: NDArray[np.float64]) -> tuple[np.ndarray, np.ndarray]:
    A = np.ascontiguousarray(A, dtype=np.float64)
    b = np.ascontiguousarray(b, dtype=np.float64).reshape(-1, 1)
    if A.ndim != 2 or A.shape[0] != b.shape[0]:
        raise ValueError(f"incompatible system shapes: A {A.shape}, b {b.shape}")
    if A.shape[0] < A.shape[1]:
        raise DegenerateGeometryError(
            f"underdetermined system: {A.shape[0]} equations for {A.shape[1]} unknowns"
        )
    return A, b


class SVDSolver:
    """Least-squares solve through singular value decomposition."""

    name = "svd"

    def solve(self, A: NDArray[np.float64], b: NDArray[np.float64]) -> NDArray[np.float64]:
        A, b = _as_system(A, b)
        _, x = cv2.solve(A, b, flags=cv2.DECOMP_SVD)
        return x.ravel()


class LUSolver:
    """Gaussian elimination with partial pivoting.

    Tall systems are reduced to their normal equations first. When LU
    reports a singular matrix, or the (normal) matrix condition number is
    above ``condition_limit``, the solve is repeated with SVD.
    """

    name = "lu"

    def __init__(self, condition_limit: float = LU_CONDITION_LIMIT):
        self.condition_limit = condition_limit
        self._fallback = SVDSolver()

    def solve(self, A: NDArray[np.float64], b: NDArray[np.float64]) -> NDArray[np.float64]:
        A, b = _as_system(A, b)
        square = A.shape[0] == A.shape[1]
        flags = cv2.DECOMP_LU if square else cv2.DECOMP_LU | cv2.DECOMP_NORMAL

        ok, x = cv2.solve(A, b, flags=flags)
        if ok:
            normal = A if square else A.T @ A
            cond = np.linalg.cond(normal)
            if np.isfinite(cond) and cond <= self.condition_limit:
                return x.ravel()
            logger.warning(
                f"LU solve ill-conditioned (cond={cond:.3e}), falling back to SVD"
            )
        else:
            logger.warning("LU solve reported a singular matrix, falling back to SVD")

        return self._fallback.solve(A, b)


def make_solver(use_lu: bool = False) -> LinearSolver:
    """Solver matching the ``use_lu`` calibration option."""
    return LUSolver() if use_lu else SVDSolver()
