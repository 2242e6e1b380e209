"""
rigcalib: joint camera calibration from views of a known rig.

Estimates the camera matrix, the lens distortion coefficients and one pose
per view of a planar or 3D calibration rig by closed-form initialization
followed by Levenberg-Marquardt refinement of the reprojection error.
"""

__version__ = "1.0.0"

from rigcalib.core.types import (
    CalibrationError,
    CalibrationResult,
    CameraMatrix,
    DegenerateGeometryError,
    DidNotConverge,
    DistortionCoefficients,
    FileFormatError,
    InsufficientViewsError,
    InvalidParameterError,
    Pose,
    PoseEstimationError,
    TermCriteria,
    TermCriteriaType,
    TerminationStatus,
    View,
)
from rigcalib.core.config import CalibrationConfig
from rigcalib.core.calibrator import CameraCalibrator, calibrate_camera

__all__ = [
    "CalibrationError",
    "CalibrationResult",
    "CameraMatrix",
    "DegenerateGeometryError",
    "DidNotConverge",
    "DistortionCoefficients",
    "FileFormatError",
    "InsufficientViewsError",
    "InvalidParameterError",
    "Pose",
    "PoseEstimationError",
    "TermCriteria",
    "TermCriteriaType",
    "TerminationStatus",
    "View",
    "CalibrationConfig",
    "CameraCalibrator",
    "calibrate_camera",
    "__version__",
]
