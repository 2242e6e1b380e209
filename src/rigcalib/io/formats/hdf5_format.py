"""
HDF5 format support for calibration data.

HDF5 is a cross-platform, widely supported format for scientific data.
It can be read by Python (h5py), MATLAB, Octave, Julia, R, and many other tools.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import h5py
import numpy as np

from rigcalib.core.types import (
    CalibrationResult,
    CameraMatrix,
    DistortionCoefficients,
    FileFormatError,
    InvalidParameterError,
    TerminationStatus,
)
from rigcalib.io.formats.common import (
    FORMAT_TYPE,
    FORMAT_VERSION,
    parse_status,
    parse_timestamp,
    pose_arrays,
    poses_from_arrays,
)
from rigcalib.utils.logging import get_logger

logger = get_logger("io.formats.hdf5")


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class HDF5Format:
    """HDF5 format reader/writer for calibration data.

    File structure:
        /intrinsic/
            camera_matrix       (3,3) float64
            distortion_coeffs   (n,) float64
            image_size          (2,) int32
            @reprojection_error float64
        /extrinsic/
            rotation_vectors    (M,3) float64
            translation_vectors (M,3) float64
        /optimization/
            per_view_errors     (M,) float64 (optional)
            @status, @iterations, @initial_error (optional)
        /metadata/
            @timestamp, @software_version, @notes

    Example (Octave/MATLAB):
        K = h5read('calibration.h5', '/intrinsic/camera_matrix');
        D = h5read('calibration.h5', '/intrinsic/distortion_coeffs');
    """

    EXTENSION = ".h5"

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        compression: Optional[str] = "gzip",
    ) -> None:
        """Save calibration result to HDF5 file.

        Args:
            path: Output file path.
            result: Calibration result to save.
            compression: Compression algorithm ('gzip', 'lzf', or None).
        """
        path = Path(path)
        if path.suffix.lower() not in (".h5", ".hdf5"):
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        rvecs, tvecs = pose_arrays(result.poses)

        with h5py.File(path, "w") as f:
            f.attrs["format_version"] = FORMAT_VERSION
            f.attrs["format_type"] = FORMAT_TYPE

            intrinsic_grp = f.create_group("intrinsic")
            intrinsic_grp.create_dataset("camera_matrix", data=result.camera_matrix.matrix)
            intrinsic_grp.create_dataset("distortion_coeffs", data=result.dist_coeffs.values)
            intrinsic_grp.create_dataset(
                "image_size",
                data=np.array(result.image_size, dtype=np.int32),
            )
            intrinsic_grp.attrs["reprojection_error"] = result.reprojection_error

            extrinsic_grp = f.create_group("extrinsic")
            extrinsic_grp.create_dataset("rotation_vectors", data=rvecs, compression=compression)
            extrinsic_grp.create_dataset("translation_vectors", data=tvecs, compression=compression)

            optimization_grp = f.create_group("optimization")
            optimization_grp.attrs["status"] = result.status.value
            optimization_grp.attrs["iterations"] = result.iterations
            if result.initial_error is not None:
                optimization_grp.attrs["initial_error"] = result.initial_error
            if result.per_view_errors is not None:
                optimization_grp.create_dataset(
                    "per_view_errors",
                    data=np.array(result.per_view_errors, dtype=np.float64),
                    compression=compression,
                )

            metadata_grp = f.create_group("metadata")
            metadata_grp.attrs["timestamp"] = result.timestamp.isoformat()
            metadata_grp.attrs["software_version"] = result.software_version
            metadata_grp.attrs["notes"] = result.notes

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from HDF5 file.

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

        logger.info(f"Loading calibration from HDF5: {path}")

        try:
            f = h5py.File(path, "r")
        except OSError as e:
            raise FileFormatError(f"Failed to open HDF5 file: {e}") from e

        with f:
            format_type = _text(f.attrs.get("format_type", ""))
            if format_type != FORMAT_TYPE:
                logger.warning(f"Unknown format type: {format_type}")

            if "intrinsic" not in f:
                raise FileFormatError("Missing intrinsic group in HDF5 file")
            intrinsic_grp = f["intrinsic"]
            try:
                camera = CameraMatrix.from_matrix(intrinsic_grp["camera_matrix"][:])
                dist = DistortionCoefficients(intrinsic_grp["distortion_coeffs"][:])
            except (KeyError, InvalidParameterError) as e:
                raise FileFormatError(f"Invalid intrinsic group: {e}") from e
            image_size = (0, 0)
            if "image_size" in intrinsic_grp:
                image_size = tuple(int(v) for v in intrinsic_grp["image_size"][:])
            reprojection_error = float(intrinsic_grp.attrs.get("reprojection_error", 0.0))

            poses = []
            if "extrinsic" in f:
                extrinsic_grp = f["extrinsic"]
                poses = poses_from_arrays(
                    extrinsic_grp["rotation_vectors"][:],
                    extrinsic_grp["translation_vectors"][:],
                )

            status = TerminationStatus.CONVERGED
            iterations = 0
            initial_error = None
            per_view_errors = None
            if "optimization" in f:
                optimization_grp = f["optimization"]
                attrs = optimization_grp.attrs
                status = parse_status(_text(attrs.get("status", "converged")))
                iterations = int(attrs.get("iterations", 0))
                if "initial_error" in attrs:
                    initial_error = float(attrs["initial_error"])
                if "per_view_errors" in optimization_grp:
                    per_view_errors = [float(e) for e in optimization_grp["per_view_errors"][:]]

            timestamp_str = ""
            software_version = "unknown"
            notes = ""
            if "metadata" in f:
                attrs = f["metadata"].attrs
                timestamp_str = _text(attrs.get("timestamp", ""))
                software_version = _text(attrs.get("software_version", "unknown"))
                notes = _text(attrs.get("notes", ""))

        return CalibrationResult(
            camera_matrix=camera,
            dist_coeffs=dist,
            reprojection_error=reprojection_error,
            poses=poses,
            image_size=image_size,
            per_view_errors=per_view_errors,
            initial_error=initial_error,
            iterations=iterations,
            status=status,
            timestamp=parse_timestamp(timestamp_str),
            software_version=software_version,
            notes=notes,
        )

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a calibration HDF5 file."""
        path = Path(path)
        if not path.exists() or not h5py.is_hdf5(str(path)):
            return False

        try:
            with h5py.File(path, "r") as f:
                return "intrinsic" in f and "camera_matrix" in f["intrinsic"]
        except (OSError, KeyError):
            return False
