"""Core calibration algorithms."""

from rigcalib.core.types import (
    ActiveParameterMask,
    CalibrationResult,
    CameraMatrix,
    DistortionCoefficients,
    Pose,
    TermCriteria,
    TerminationStatus,
    View,
)
from rigcalib.core.config import CalibrationConfig
from rigcalib.core.distortion import project_points, project_points_with_jacobian
from rigcalib.core.homography import find_homography
from rigcalib.core.intrinsic import init_camera_matrix, init_camera_matrix_2d
from rigcalib.core.pose import HomographyPoseSolver, PnPPoseSolver, estimate_poses
from rigcalib.core.parameters import ParameterLayout
from rigcalib.core.residuals import ReprojectionProblem, compute_reprojection_errors, reproject
from rigcalib.core.optimizer import LevenbergMarquardt, OptimizerState
from rigcalib.core.solvers import LUSolver, SVDSolver, make_solver
from rigcalib.core.calibrator import CameraCalibrator, calibrate_camera

__all__ = [
    # Types
    "ActiveParameterMask",
    "CalibrationResult",
    "CameraMatrix",
    "DistortionCoefficients",
    "Pose",
    "TermCriteria",
    "TerminationStatus",
    "View",
    # Configuration
    "CalibrationConfig",
    # Projection
    "project_points",
    "project_points_with_jacobian",
    # Initialization
    "find_homography",
    "init_camera_matrix",
    "init_camera_matrix_2d",
    "HomographyPoseSolver",
    "PnPPoseSolver",
    "estimate_poses",
    # Refinement
    "ParameterLayout",
    "ReprojectionProblem",
    "compute_reprojection_errors",
    "reproject",
    "LevenbergMarquardt",
    "OptimizerState",
    "LUSolver",
    "SVDSolver",
    "make_solver",
    # Entry point
    "CameraCalibrator",
    "calibrate_camera",
]
