"""
MAT format support for calibration data.

MAT format is native to MATLAB and fully compatible with GNU Octave.
This implementation uses scipy.io for reading/writing MAT files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

import numpy as np
import scipy.io as sio
from scipy.io.matlab import MatReadError

from rigcalib.core.types import (
    CalibrationResult,
    CameraMatrix,
    DistortionCoefficients,
    FileFormatError,
    InvalidParameterError,
)
from rigcalib.io.formats.common import (
    FORMAT_VERSION,
    parse_status,
    parse_timestamp,
    pose_arrays,
    poses_from_arrays,
)
from rigcalib.utils.logging import get_logger

logger = get_logger("io.formats.mat")

MAT_HEADER_SIZE = 128


def _scalar(value: Any) -> float:
    return float(np.asarray(value).ravel()[0])


def _has_mat_header(path: Path) -> bool:
    # Level 5 MAT files open with a 128 byte text header
    with open(path, "rb") as f:
        header = f.read(MAT_HEADER_SIZE)
    return len(header) == MAT_HEADER_SIZE and header.startswith(b"MATLAB")


class MATFormat:
    """MAT format reader/writer for calibration data.

    Variables in the MAT file:
        camera_matrix        (3,3) double
        distortion_coeffs    (1,n) double
        image_size           (1,2) double, [width, height]
        reprojection_error   (1,1) double
        rotation_vectors     (M,3) double, one row per view
        translation_vectors  (M,3) double
        per_view_errors      (1,M) double (optional)
        initial_error        (1,1) double (optional)
        iterations           (1,1) double
        status               string
        timestamp            string
        software_version     string
        notes                string (optional)

    Example (Octave/MATLAB):
        >> data = load('calibration.mat');
        >> K = data.camera_matrix;
        >> R1 = rodrigues(data.rotation_vectors(1, :));
    """

    EXTENSION = ".mat"

    @classmethod
    def save(cls, path: Union[str, Path], result: CalibrationResult) -> None:
        """Save calibration result to MAT file.

        Args:
            path: Output file path.
            result: Calibration result to save.
        """
        path = Path(path)
        if path.suffix.lower() != cls.EXTENSION:
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        rvecs, tvecs = pose_arrays(result.poses)
        mdict: dict[str, Any] = {
            "camera_matrix": result.camera_matrix.matrix,
            "distortion_coeffs": result.dist_coeffs.values.reshape(1, -1),
            "image_size": np.array(result.image_size, dtype=np.float64).reshape(1, 2),
            "reprojection_error": np.array([[result.reprojection_error]]),
            "rotation_vectors": rvecs,
            "translation_vectors": tvecs,
            "iterations": np.array([[result.iterations]], dtype=np.float64),
            "status": result.status.value,
            "timestamp": result.timestamp.isoformat(),
            "software_version": result.software_version,
            "format_version": FORMAT_VERSION,
        }
        if result.initial_error is not None:
            mdict["initial_error"] = np.array([[result.initial_error]])
        if result.per_view_errors is not None:
            mdict["per_view_errors"] = np.array(result.per_view_errors, dtype=np.float64).reshape(1, -1)
        if result.notes:
            mdict["notes"] = result.notes

        sio.savemat(path, mdict, do_compression=True)

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from MAT file.

        Args:
            path: Input file path.

        Returns:
            CalibrationResult loaded from file.

        Raises:
            FileFormatError: If file format is invalid.
        """
        path = Path(path)

        if not path.exists():
            raise FileFormatError(f"File not found: {path}")

        logger.info(f"Loading calibration from MAT: {path}")

        if not _has_mat_header(path):
            raise FileFormatError(f"Not a MAT file: {path}")

        try:
            # squeeze_me=True: single-element arrays become scalars
            data = sio.loadmat(path, squeeze_me=True)
        except (MatReadError, OSError, ValueError) as e:
            raise FileFormatError(f"Failed to load MAT file: {e}") from e

        if "camera_matrix" not in data:
            raise FileFormatError("Missing camera_matrix in MAT file")
        if "distortion_coeffs" not in data:
            raise FileFormatError("Missing distortion_coeffs in MAT file")

        try:
            camera = CameraMatrix.from_matrix(np.array(data["camera_matrix"], dtype=np.float64))
            dist = DistortionCoefficients(np.array(data["distortion_coeffs"], dtype=np.float64))
        except InvalidParameterError as e:
            raise FileFormatError(f"Invalid intrinsics in MAT file: {e}") from e

        if "image_size" in data:
            image_size = tuple(int(x) for x in np.array(data["image_size"]).ravel()[:2])
        else:
            image_size = (0, 0)

        poses = []
        if "rotation_vectors" in data and "translation_vectors" in data:
            poses = poses_from_arrays(data["rotation_vectors"], data["translation_vectors"])

        per_view_errors = None
        if "per_view_errors" in data:
            per_view_errors = [float(e) for e in np.atleast_1d(data["per_view_errors"])]

        return CalibrationResult(
            camera_matrix=camera,
            dist_coeffs=dist,
            reprojection_error=_scalar(data["reprojection_error"]) if "reprojection_error" in data else 0.0,
            poses=poses,
            image_size=image_size,
            per_view_errors=per_view_errors,
            initial_error=_scalar(data["initial_error"]) if "initial_error" in data else None,
            iterations=int(_scalar(data["iterations"])) if "iterations" in data else 0,
            status=parse_status(str(data.get("status", "converged"))),
            timestamp=parse_timestamp(str(data.get("timestamp", ""))),
            software_version=str(data.get("software_version", "unknown")),
            notes=str(data.get("notes", "")),
        )

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a calibration MAT file."""
        path = Path(path)
        if not path.exists() or not _has_mat_header(path):
            return False

        try:
            data = sio.loadmat(path, squeeze_me=True)
        except (MatReadError, OSError, ValueError):
            return False
        return "camera_matrix" in data and "distortion_coeffs" in data
