"""Conversions shared by the file formats."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from rigcalib.core.types import FileFormatError, Pose, TerminationStatus

FORMAT_TYPE = "rigcalib"
FORMAT_VERSION = "1.0"


def pose_arrays(poses: Sequence[Pose]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Stack poses into (M, 3) rotation and translation arrays."""
    rvecs = np.array([p.rotation_vector for p in poses], dtype=np.float64).reshape(-1, 3)
    tvecs = np.array([p.translation_vector for p in poses], dtype=np.float64).reshape(-1, 3)
    return rvecs, tvecs


def poses_from_arrays(rvecs: ArrayLike, tvecs: ArrayLike) -> list[Pose]:
    """Inverse of :func:`pose_arrays`."""
    rvecs = np.asarray(rvecs, dtype=np.float64).reshape(-1, 3)
    tvecs = np.asarray(tvecs, dtype=np.float64).reshape(-1, 3)
    if len(rvecs) != len(tvecs):
        raise FileFormatError(
            f"{len(rvecs)} rotation vectors but {len(tvecs)} translation vectors"
        )
    return [Pose(rotation_vector=r, translation_vector=t) for r, t in zip(rvecs, tvecs)]


def parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value) if value else datetime.now()
    except ValueError:
        return datetime.now()


def parse_status(value: str) -> TerminationStatus:
    try:
        return TerminationStatus(value)
    except ValueError:
        raise FileFormatError(f"Unknown termination status: {value!r}") from None
