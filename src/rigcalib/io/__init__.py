"""Persistence of calibration results."""

from rigcalib.io.calibration_file import CalibrationFile, CalibrationFileFormat

__all__ = [
    "CalibrationFile",
    "CalibrationFileFormat",
]
