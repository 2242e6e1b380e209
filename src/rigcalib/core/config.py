"""
Calibration options.

A single dataclass carries every option of the calibration call. It is
resolved once into a parameter layout (see ``rigcalib.core.parameters``)
before the optimization starts. OpenCV ``CALIB_*`` flag integers can be
converted to and from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Optional, Union

import cv2
import numpy as np
from numpy.typing import ArrayLike

from rigcalib.core.types import (
    CameraMatrix,
    DistortionCoefficients,
    InvalidParameterError,
    TermCriteria,
)

# Option name -> OpenCV flag
_CV_FLAGS = {
    "use_intrinsic_guess": cv2.CALIB_USE_INTRINSIC_GUESS,
    "fix_principal_point": cv2.CALIB_FIX_PRINCIPAL_POINT,
    "fix_aspect_ratio": cv2.CALIB_FIX_ASPECT_RATIO,
    "zero_tangent_dist": cv2.CALIB_ZERO_TANGENT_DIST,
    "fix_k1": cv2.CALIB_FIX_K1,
    "fix_k2": cv2.CALIB_FIX_K2,
    "fix_k3": cv2.CALIB_FIX_K3,
    "fix_k4": cv2.CALIB_FIX_K4,
    "fix_k5": cv2.CALIB_FIX_K5,
    "fix_k6": cv2.CALIB_FIX_K6,
    "rational_model": cv2.CALIB_RATIONAL_MODEL,
    "thin_prism_model": cv2.CALIB_THIN_PRISM_MODEL,
    "fix_s1_s2_s3_s4": cv2.CALIB_FIX_S1_S2_S3_S4,
    "tilted_model": cv2.CALIB_TILTED_MODEL,
    "fix_tau_x_tau_y": cv2.CALIB_FIX_TAUX_TAUY,
    "use_lu": cv2.CALIB_USE_LU,
}


@dataclass
class CalibrationConfig:
    """Configuration for camera calibration.

    Attributes:
        camera_matrix_guess: Initial camera matrix. Used as the starting
            point with ``use_intrinsic_guess``; otherwise only its fx/fy
            ratio matters (with ``fix_aspect_ratio``).
        dist_coeffs_guess: Initial distortion (4, 5, 8, 12 or 14 values).
            Used fully with ``use_intrinsic_guess``; otherwise only the
            coefficients held fixed take their value from it.
        use_intrinsic_guess: Start from the guesses instead of the
            closed-form initialization.
        fix_principal_point: Keep cx, cy at the image center (or the guess).
        fix_aspect_ratio: Optimize fy only; fx follows the guess ratio.
        zero_tangent_dist: p1 = p2 = 0 throughout.
        fix_k1 .. fix_k6: Hold the corresponding radial coefficient.
        rational_model: Enable k4, k5, k6 (8 coefficients).
        thin_prism_model: Enable s1..s4 (12 coefficients).
        fix_s1_s2_s3_s4: Hold the thin prism coefficients.
        tilted_model: Enable tauX, tauY (14 coefficients).
        fix_tau_x_tau_y: Hold the tilt coefficients.
        use_lu: LU instead of SVD for the linear solves.
        criteria: Termination criteria of the refinement.
        max_workers: Threads used to evaluate views (1 = inline).
    """
    camera_matrix_guess: Optional[CameraMatrix] = None
    dist_coeffs_guess: Optional[DistortionCoefficients] = None
    use_intrinsic_guess: bool = False
    fix_principal_point: bool = False
    fix_aspect_ratio: bool = False
    zero_tangent_dist: bool = False
    fix_k1: bool = False
    fix_k2: bool = False
    fix_k3: bool = False
    fix_k4: bool = False
    fix_k5: bool = False
    fix_k6: bool = False
    rational_model: bool = False
    thin_prism_model: bool = False
    fix_s1_s2_s3_s4: bool = False
    tilted_model: bool = False
    fix_tau_x_tau_y: bool = False
    use_lu: bool = False
    criteria: TermCriteria = field(default_factory=TermCriteria)
    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.camera_matrix_guess is not None and not isinstance(
            self.camera_matrix_guess, CameraMatrix
        ):
            self.camera_matrix_guess = CameraMatrix.from_matrix(self.camera_matrix_guess)
        if self.dist_coeffs_guess is not None and not isinstance(
            self.dist_coeffs_guess, DistortionCoefficients
        ):
            self.dist_coeffs_guess = DistortionCoefficients(self.dist_coeffs_guess)
        if self.use_intrinsic_guess and self.camera_matrix_guess is None:
            raise InvalidParameterError("use_intrinsic_guess requires camera_matrix_guess")
        if self.max_workers < 1:
            raise InvalidParameterError(f"max_workers must be >= 1, got {self.max_workers}")

    @property
    def distortion_length(self) -> int:
        """Length of the distortion vector the calibration returns."""
        if self.tilted_model:
            return 14
        if self.thin_prism_model:
            return 12
        if self.rational_model:
            return 8
        return 5

    def to_cv_flags(self) -> int:
        """OpenCV calibrateCamera flags equivalent to this configuration."""
        flags = 0
        for name, flag in _CV_FLAGS.items():
            if getattr(self, name):
                flags |= flag
        return flags

    def to_cv_criteria(self) -> tuple[int, int, float]:
        """OpenCV (type, maxCount, epsilon) tuple for ``criteria``."""
        cv_type = 0
        if self.criteria.uses_count:
            cv_type |= cv2.TERM_CRITERIA_COUNT
        if self.criteria.uses_eps:
            cv_type |= cv2.TERM_CRITERIA_EPS
        return cv_type, self.criteria.max_count, self.criteria.epsilon

    @classmethod
    def from_cv_flags(
        cls,
        flags: int,
        camera_matrix: Union[CameraMatrix, ArrayLike, None] = None,
        dist_coeffs: Union[DistortionCoefficients, ArrayLike, None] = None,
        **kwargs: Any,
    ) -> CalibrationConfig:
        """Build from OpenCV calibrateCamera flags.

        Args:
            flags: Bitwise OR of ``cv2.CALIB_*`` constants.
            camera_matrix: Optional 3x3 guess.
            dist_coeffs: Optional distortion guess.
            **kwargs: Remaining fields (criteria, max_workers).
        """
        known = {f.name for f in fields(cls)}
        unknown = set(kwargs) - known
        if unknown:
            raise InvalidParameterError(f"unknown options: {sorted(unknown)}")
        options = {name: bool(flags & flag) for name, flag in _CV_FLAGS.items()}
        options.update(kwargs)
        if dist_coeffs is not None:
            dist_coeffs = np.asarray(
                dist_coeffs.values if isinstance(dist_coeffs, DistortionCoefficients) else dist_coeffs,
                dtype=np.float64,
            ).ravel()
        return cls(
            camera_matrix_guess=camera_matrix,
            dist_coeffs_guess=dist_coeffs,
            **options,
        )
