"""
JSON format support for calibration data.

JSON format is human-readable and widely supported.
It's useful for configuration, debugging, and interoperability.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Union

import numpy as np

from rigcalib.core.types import (
    CalibrationResult,
    CameraMatrix,
    DistortionCoefficients,
    FileFormatError,
    InvalidParameterError,
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

logger = get_logger("io.formats.json")


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy arrays."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class JSONFormat:
    """JSON format reader/writer for calibration data.

    JSON structure:
        {
            "format_version": "1.0",
            "format_type": "rigcalib",
            "intrinsic": {
                "camera_matrix": [[fx, 0, cx], [0, fy, cy], [0, 0, 1]],
                "distortion_coeffs": [k1, k2, p1, p2, k3, ...],
                "image_size": [width, height],
                "reprojection_error": 0.5
            },
            "extrinsic": {
                "rotation_vectors": [[rx, ry, rz], ...],
                "translation_vectors": [[tx, ty, tz], ...]
            },
            "optimization": {
                "status": "converged",
                "iterations": 12,
                "initial_error": 3.1,
                "per_view_errors": [0.3, 0.4, ...]
            },
            "metadata": {
                "timestamp": "2024-01-01T12:00:00",
                "software_version": "1.0.0",
                "notes": ""
            }
        }
    """

    EXTENSION = ".json"

    @classmethod
    def to_dict(cls, result: CalibrationResult) -> dict[str, Any]:
        """Build the JSON document of a result."""
        rvecs, tvecs = pose_arrays(result.poses)
        K = result.camera_matrix
        return {
            "format_version": FORMAT_VERSION,
            "format_type": FORMAT_TYPE,
            "intrinsic": {
                "camera_matrix": K.matrix,
                "distortion_coeffs": result.dist_coeffs.values,
                "image_size": list(result.image_size),
                "reprojection_error": result.reprojection_error,
                # Convenience fields
                "fx": K.fx,
                "fy": K.fy,
                "cx": K.cx,
                "cy": K.cy,
            },
            "extrinsic": {
                "rotation_vectors": rvecs,
                "translation_vectors": tvecs,
            },
            "optimization": {
                "status": result.status.value,
                "iterations": result.iterations,
                "initial_error": result.initial_error,
                "per_view_errors": result.per_view_errors,
            },
            "metadata": {
                "timestamp": result.timestamp,
                "software_version": result.software_version,
                "notes": result.notes,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationResult:
        """Rebuild a result from its JSON document.

        Raises:
            FileFormatError: If required sections are missing or malformed.
        """
        if "intrinsic" not in data:
            raise FileFormatError("Missing 'intrinsic' section in JSON file")
        intrinsic = data["intrinsic"]
        if "camera_matrix" not in intrinsic:
            raise FileFormatError("Missing 'camera_matrix' in intrinsic section")

        extrinsic = data.get("extrinsic", {})
        optimization = data.get("optimization", {})
        metadata = data.get("metadata", {})

        try:
            camera = CameraMatrix.from_matrix(np.array(intrinsic["camera_matrix"], dtype=np.float64))
            dist = DistortionCoefficients(intrinsic.get("distortion_coeffs", [0.0] * 5))
        except InvalidParameterError as e:
            raise FileFormatError(f"Invalid intrinsic section: {e}") from e

        per_view_errors = optimization.get("per_view_errors")
        initial_error = optimization.get("initial_error")

        return CalibrationResult(
            camera_matrix=camera,
            dist_coeffs=dist,
            reprojection_error=float(intrinsic.get("reprojection_error", 0.0)),
            poses=poses_from_arrays(
                extrinsic.get("rotation_vectors", []),
                extrinsic.get("translation_vectors", []),
            ),
            image_size=tuple(int(v) for v in intrinsic.get("image_size", [0, 0])),
            per_view_errors=[float(e) for e in per_view_errors] if per_view_errors is not None else None,
            initial_error=float(initial_error) if initial_error is not None else None,
            iterations=int(optimization.get("iterations", 0)),
            status=parse_status(optimization.get("status", "converged")),
            timestamp=parse_timestamp(metadata.get("timestamp", "")),
            software_version=str(metadata.get("software_version", "unknown")),
            notes=str(metadata.get("notes", "")),
        )

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        indent: int = 2,
        ensure_ascii: bool = False,
    ) -> None:
        """Save calibration result to JSON file.

        Args:
            path: Output file path.
            result: Calibration result to save.
            indent: JSON indentation level.
            ensure_ascii: If True, escape non-ASCII characters.
        """
        path = Path(path)
        if path.suffix.lower() != cls.EXTENSION:
            path = path.with_suffix(cls.EXTENSION)

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(cls.to_dict(result), f, indent=indent, ensure_ascii=ensure_ascii, cls=NumpyEncoder)

        logger.info(f"Saved calibration to: {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> CalibrationResult:
        """Load calibration result from JSON file.

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

        logger.info(f"Loading calibration from JSON: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise FileFormatError(f"Invalid JSON format: {e}") from e

        if data.get("format_type") != FORMAT_TYPE:
            logger.warning(f"Unknown format type: {data.get('format_type')}")

        return cls.from_dict(data)

    @classmethod
    def is_valid_file(cls, path: Union[str, Path]) -> bool:
        """Check if a file is a valid calibration JSON file."""
        path = Path(path)
        if not path.exists():
            return False

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return isinstance(data, dict) and "camera_matrix" in data.get("intrinsic", {})
        except (json.JSONDecodeError, UnicodeDecodeError):
            return False

    @classmethod
    def to_string(cls, result: CalibrationResult, indent: int = 2) -> str:
        """Convert calibration result to JSON string."""
        return json.dumps(cls.to_dict(result), indent=indent, cls=NumpyEncoder)
