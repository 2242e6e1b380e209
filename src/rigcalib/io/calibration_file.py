"""
Unified calibration file interface.

Provides a single entry point for saving/loading calibration results
in multiple formats (HDF5, MAT, JSON).
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union

from rigcalib.core.types import CalibrationResult, FileFormatError
from rigcalib.io.formats.hdf5_format import HDF5Format
from rigcalib.io.formats.json_format import JSONFormat
from rigcalib.io.formats.mat_format import MATFormat
from rigcalib.utils.logging import get_logger

logger = get_logger("io.calibration_file")


class CalibrationFileFormat(Enum):
    """Supported calibration file formats."""
    HDF5 = "hdf5"
    MAT = "mat"
    JSON = "json"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @classmethod
    def from_extension(cls, ext: str) -> CalibrationFileFormat:
        """Get format from file extension.

        Args:
            ext: File extension (with or without leading dot).

        Raises:
            ValueError: If extension is not recognized.
        """
        ext = ext.lower().lstrip(".")
        mapping = {
            "h5": cls.HDF5,
            "hdf5": cls.HDF5,
            "mat": cls.MAT,
            "json": cls.JSON,
        }
        if ext not in mapping:
            raise ValueError(f"Unknown file extension: {ext}")
        return mapping[ext]


_EXTENSIONS = {
    CalibrationFileFormat.HDF5: ".h5",
    CalibrationFileFormat.MAT: ".mat",
    CalibrationFileFormat.JSON: ".json",
}


class CalibrationFile:
    """Unified interface for calibration file operations.

    Example:
        >>> CalibrationFile.save("calibration.json", result)
        >>> CalibrationFile.save("calibration.mat", result)  # MAT (Octave)
        >>> result = CalibrationFile.load("calibration.json")
    """

    _handlers = {
        CalibrationFileFormat.HDF5: HDF5Format,
        CalibrationFileFormat.MAT: MATFormat,
        CalibrationFileFormat.JSON: JSONFormat,
    }

    @classmethod
    def save(
        cls,
        path: Union[str, Path],
        result: CalibrationResult,
        format: Optional[CalibrationFileFormat] = None,
    ) -> Path:
        """Save calibration result to file.

        Args:
            path: Output file path.
            result: Calibration result to save.
            format: File format (from the extension if None, HDF5 when the
                extension is unknown).

        Returns:
            Path of the written file.
        """
        path = Path(path)

        if format is None:
            try:
                format = CalibrationFileFormat.from_extension(path.suffix)
            except ValueError:
                format = CalibrationFileFormat.HDF5
                path = path.with_suffix(format.extension)
        elif not cls._matches(path, format):
            path = path.with_suffix(format.extension)

        cls._handlers[format].save(path, result)

        logger.info(f"Saved calibration to {format.value}: {path}")
        return path

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        format: Optional[CalibrationFileFormat] = None,
    ) -> CalibrationResult:
        """Load calibration result from file.

        Args:
            path: Input file path.
            format: File format (from the extension, then content, if None).

        Raises:
            FileFormatError: If file cannot be loaded.
        """
        path = Path(path)

        if not path.exists():
            raise FileFormatError(f"File not found: {path}")

        if format is None:
            try:
                format = CalibrationFileFormat.from_extension(path.suffix)
            except ValueError:
                format = cls._detect_format(path)

        result = cls._handlers[format].load(path)

        logger.info(f"Loaded calibration from {format.value}: {path}")
        return result

    @staticmethod
    def _matches(path: Path, format: CalibrationFileFormat) -> bool:
        try:
            return CalibrationFileFormat.from_extension(path.suffix) is format
        except ValueError:
            return False

    @classmethod
    def _detect_format(cls, path: Path) -> CalibrationFileFormat:
        """Detect file format from content.

        Raises:
            FileFormatError: If format cannot be detected.
        """
        for format, handler in cls._handlers.items():
            if handler.is_valid_file(path):
                return format

        raise FileFormatError(f"Could not detect format of: {path}")

    @classmethod
    def get_supported_extensions(cls) -> list[str]:
        """Get list of supported file extensions."""
        return [".h5", ".hdf5", ".mat", ".json"]

    @classmethod
    def save_all_formats(
        cls,
        base_path: Union[str, Path],
        result: CalibrationResult,
    ) -> dict[str, Path]:
        """Save calibration result in every supported format.

        Args:
            base_path: Base path; any extension is replaced.
            result: Calibration result to save.

        Returns:
            Dictionary mapping format names to saved paths.
        """
        base_path = Path(base_path)
        return {
            format.value: cls.save(base_path.with_suffix(format.extension), result, format=format)
            for format in CalibrationFileFormat
        }
