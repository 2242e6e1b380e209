"""
Core data types for camera calibration.

This module defines the value objects passed between the calibration
stages: calibration views, camera matrix, distortion coefficients, per-view
poses, termination criteria and the final calibration result, together with
the exception hierarchy used throughout the rigcalib library.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from rigcalib import __version__

# Supported distortion vector lengths, in the order groups are enabled
DISTORTION_LENGTHS = (4, 5, 8, 12, 14)

DISTORTION_NAMES = (
    "k1", "k2", "p1", "p2", "k3", "k4", "k5", "k6",
    "s1", "s2", "s3", "s4", "tau_x", "tau_y",
)

# Tolerance on mean and spread of object z for a view to count as planar
PLANARITY_TOLERANCE = 1e-5

MIN_POINTS_PER_VIEW = 4


# Custom exceptions
class CalibrationError(Exception):
    """Base exception for calibration errors."""
    pass


class DegenerateGeometryError(CalibrationError):
    """Raised when correspondences are collinear or rank deficient."""
    pass


class InsufficientViewsError(CalibrationError):
    """Raised when there are not enough views to bootstrap the intrinsics."""
    pass


class PoseEstimationError(CalibrationError):
    """Raised when the initial pose of a view cannot be found."""

    def __init__(self, message: str, view_index: Optional[int] = None):
        super().__init__(message)
        self.view_index = view_index


class InvalidParameterError(CalibrationError, ValueError):
    """Raised when invalid parameters are provided."""
    pass


class FileFormatError(CalibrationError):
    """Raised when file format is invalid or unsupported."""
    pass


class DidNotConverge(UserWarning):
    """Issued when the optimizer stops on the iteration limit before epsilon."""
    pass


@dataclass
class View:
    """One observation of the calibration rig.

    Attributes:
        object_points: Array of shape (N, 3), rig coordinates.
        image_points: Array of shape (N, 2), pixel coordinates of the same
            points in the same order.
    """
    object_points: NDArray[np.float64]
    image_points: NDArray[np.float64]

    def __post_init__(self) -> None:
        obj = np.array(self.object_points, dtype=np.float64)
        img = np.array(self.image_points, dtype=np.float64)

        # Accept OpenCV style (N, 1, 3) / (N, 1, 2) arrays
        if obj.ndim == 3 and obj.shape[1] == 1:
            obj = obj[:, 0, :]
        if img.ndim == 3 and img.shape[1] == 1:
            img = img[:, 0, :]

        if obj.ndim != 2 or obj.shape[1] != 3:
            raise InvalidParameterError(
                f"object_points must have shape (N, 3), got {obj.shape}"
            )
        if img.ndim != 2 or img.shape[1] != 2:
            raise InvalidParameterError(
                f"image_points must have shape (N, 2), got {img.shape}"
            )
        if len(obj) != len(img):
            raise InvalidParameterError(
                f"object and image point counts differ: {len(obj)} != {len(img)}"
            )
        if len(obj) < MIN_POINTS_PER_VIEW:
            raise InvalidParameterError(
                f"a view needs at least {MIN_POINTS_PER_VIEW} points, got {len(obj)}"
            )
        if not (np.all(np.isfinite(obj)) and np.all(np.isfinite(img))):
            raise InvalidParameterError("view contains non-finite coordinates")

        obj.flags.writeable = False
        img.flags.writeable = False
        self.object_points = obj
        self.image_points = img

    def __len__(self) -> int:
        return len(self.object_points)

    @property
    def num_points(self) -> int:
        """Number of correspondences in the view."""
        return len(self.object_points)

    @property
    def is_planar(self) -> bool:
        """True when every object point lies on the z = 0 plane."""
        z = self.object_points[:, 2]
        return abs(float(z.mean())) <= PLANARITY_TOLERANCE and float(z.std()) <= PLANARITY_TOLERANCE


@dataclass
class CameraMatrix:
    """Pinhole intrinsics with zero skew.

    Attributes:
        fx: Focal length in x direction (pixels).
        fy: Focal length in y direction (pixels).
        cx: Principal point x coordinate (pixels).
        cy: Principal point y coordinate (pixels).
    """
    fx: float
    fy: float
    cx: float
    cy: float

    def __post_init__(self) -> None:
        self.fx = float(self.fx)
        self.fy = float(self.fy)
        self.cx = float(self.cx)
        self.cy = float(self.cy)

    @property
    def matrix(self) -> NDArray[np.float64]:
        """3x3 camera matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx],
             [0.0, self.fy, self.cy],
             [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def aspect_ratio(self) -> float:
        """Ratio fx / fy."""
        return self.fx / self.fy

    @classmethod
    def from_matrix(cls, matrix: NDArray[np.float64]) -> CameraMatrix:
        """Create from a 3x3 camera matrix (skew is ignored)."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise InvalidParameterError(f"camera matrix must be 3x3, got {matrix.shape}")
        return cls(fx=matrix[0, 0], fy=matrix[1, 1], cx=matrix[0, 2], cy=matrix[1, 2])

    @classmethod
    def identity(cls) -> CameraMatrix:
        return cls(fx=1.0, fy=1.0, cx=0.0, cy=0.0)

    def as_array(self) -> NDArray[np.float64]:
        """Intrinsics as [fx, fy, cx, cy]."""
        return np.array([self.fx, self.fy, self.cx, self.cy], dtype=np.float64)


def _coefficient(index: int, doc: str) -> property:
    """Read-only accessor for one distortion coefficient (0.0 when absent)."""

    def getter(self: DistortionCoefficients) -> float:
        return float(self.values[index]) if index < len(self.values) else 0.0

    return property(getter, doc=doc)


@dataclass
class DistortionCoefficients:
    """Lens distortion coefficients.

    Ordered as [k1, k2, p1, p2, k3, k4, k5, k6, s1, s2, s3, s4, tauX, tauY];
    the vector holds 4, 5, 8, 12 or 14 leading entries of that list and the
    length decides which groups are evaluated.
    """
    values: NDArray[np.float64] = field(default_factory=lambda: np.zeros(5))

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=np.float64).ravel().copy()
        if len(values) not in DISTORTION_LENGTHS:
            raise InvalidParameterError(
                f"distortion vector must have one of {DISTORTION_LENGTHS} "
                f"elements, got {len(values)}"
            )
        self.values = values

    def __len__(self) -> int:
        return len(self.values)

    k1 = _coefficient(0, "First radial distortion coefficient.")
    k2 = _coefficient(1, "Second radial distortion coefficient.")
    p1 = _coefficient(2, "First tangential distortion coefficient.")
    p2 = _coefficient(3, "Second tangential distortion coefficient.")
    k3 = _coefficient(4, "Third radial distortion coefficient.")
    k4 = _coefficient(5, "First rational-model denominator coefficient.")
    k5 = _coefficient(6, "Second rational-model denominator coefficient.")
    k6 = _coefficient(7, "Third rational-model denominator coefficient.")
    s1 = _coefficient(8, "Thin prism coefficient s1.")
    s2 = _coefficient(9, "Thin prism coefficient s2.")
    s3 = _coefficient(10, "Thin prism coefficient s3.")
    s4 = _coefficient(11, "Thin prism coefficient s4.")
    tau_x = _coefficient(12, "Sensor tilt around the x axis (radians).")
    tau_y = _coefficient(13, "Sensor tilt around the y axis (radians).")

    @classmethod
    def zeros(cls, length: int = 5) -> DistortionCoefficients:
        return cls(np.zeros(length, dtype=np.float64))

    def padded(self) -> NDArray[np.float64]:
        """Full 14-element vector, zeros for absent groups."""
        out = np.zeros(14, dtype=np.float64)
        out[:len(self.values)] = self.values
        return out

    def resized(self, length: int) -> DistortionCoefficients:
        """Truncate or zero-pad to another supported length."""
        return DistortionCoefficients(self.padded()[:length])

    @property
    def has_rational(self) -> bool:
        return len(self.values) >= 8

    @property
    def has_thin_prism(self) -> bool:
        return len(self.values) >= 12

    @property
    def has_tilt(self) -> bool:
        return len(self.values) >= 14


@dataclass
class Pose:
    """Rigid transform from rig coordinates to camera coordinates.

    Attributes:
        rotation_vector: Rodrigues rotation vector, shape (3,).
        translation_vector: Translation vector, shape (3,).
    """
    rotation_vector: NDArray[np.float64]
    translation_vector: NDArray[np.float64]

    def __post_init__(self) -> None:
        self.rotation_vector = np.asarray(self.rotation_vector, dtype=np.float64).reshape(3).copy()
        self.translation_vector = np.asarray(self.translation_vector, dtype=np.float64).reshape(3).copy()

    @property
    def rotation_matrix(self) -> NDArray[np.float64]:
        """3x3 rotation matrix converted from rotation vector."""
        R, _ = cv2.Rodrigues(self.rotation_vector)
        return R

    @property
    def transformation_matrix(self) -> NDArray[np.float64]:
        """4x4 homogeneous transformation matrix [R|t]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation_matrix
        T[:3, 3] = self.translation_vector
        return T

    @property
    def camera_position(self) -> NDArray[np.float64]:
        """Camera center expressed in rig coordinates."""
        return -self.rotation_matrix.T @ self.translation_vector

    @classmethod
    def from_rotation_matrix(
        cls,
        rotation_matrix: NDArray[np.float64],
        translation_vector: NDArray[np.float64],
    ) -> Pose:
        """Create from rotation matrix instead of rotation vector."""
        rvec, _ = cv2.Rodrigues(np.asarray(rotation_matrix, dtype=np.float64))
        return cls(rotation_vector=rvec, translation_vector=translation_vector)

    def transform(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """Map (N, 3) rig points into the camera frame."""
        return np.asarray(points, dtype=np.float64) @ self.rotation_matrix.T + self.translation_vector


@dataclass
class ActiveParameterMask:
    """Free/fixed flag per intrinsic and distortion scalar.

    Attributes:
        intrinsics: Four flags for fx, fy, cx, cy.
        distortion: One flag per entry of the distortion vector.
    """
    intrinsics: NDArray[np.bool_]
    distortion: NDArray[np.bool_]

    def __post_init__(self) -> None:
        self.intrinsics = np.asarray(self.intrinsics, dtype=bool).ravel()
        self.distortion = np.asarray(self.distortion, dtype=bool).ravel()
        if len(self.intrinsics) != 4:
            raise InvalidParameterError("intrinsics mask must have 4 entries")

    def as_array(self) -> NDArray[np.bool_]:
        return np.concatenate([self.intrinsics, self.distortion])

    def free_names(self) -> list[str]:
        """Names of the free scalars, for logging."""
        names = ["fx", "fy", "cx", "cy"] + list(DISTORTION_NAMES[:len(self.distortion)])
        return [n for n, free in zip(names, self.as_array()) if free]


class TermCriteriaType(enum.IntFlag):
    """Which termination tests the optimizer applies."""
    COUNT = 1
    EPS = 2


@dataclass
class TermCriteria:
    """Termination criteria for the Levenberg-Marquardt refinement.

    Attributes:
        type: COUNT, EPS or COUNT | EPS.
        max_count: Maximum number of accepted iterations.
        epsilon: Threshold on relative parameter change / cost reduction.
    """
    type: TermCriteriaType = TermCriteriaType.COUNT | TermCriteriaType.EPS
    max_count: int = 30
    epsilon: float = float(np.finfo(np.float64).eps)

    def __post_init__(self) -> None:
        self.type = TermCriteriaType(self.type)
        if not self.type:
            raise InvalidParameterError("criteria type must include COUNT and/or EPS")
        if TermCriteriaType.COUNT in self.type and self.max_count < 1:
            raise InvalidParameterError(f"max_count must be >= 1, got {self.max_count}")
        if TermCriteriaType.EPS in self.type and self.epsilon < 0:
            raise InvalidParameterError(f"epsilon must be >= 0, got {self.epsilon}")

    @property
    def uses_count(self) -> bool:
        return TermCriteriaType.COUNT in self.type

    @property
    def uses_eps(self) -> bool:
        return TermCriteriaType.EPS in self.type

    @classmethod
    def from_cv(cls, criteria: tuple[int, int, float]) -> TermCriteria:
        """Build from an OpenCV (type, maxCount, epsilon) tuple."""
        cv_type, max_count, epsilon = criteria
        type_ = TermCriteriaType(0)
        if cv_type & cv2.TERM_CRITERIA_COUNT:
            type_ |= TermCriteriaType.COUNT
        if cv_type & cv2.TERM_CRITERIA_EPS:
            type_ |= TermCriteriaType.EPS
        return cls(type=type_, max_count=int(max_count), epsilon=float(epsilon))


class TerminationStatus(enum.Enum):
    """Final state of the Levenberg-Marquardt refinement."""
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    DIVERGED = "diverged"


@dataclass
class CalibrationResult:
    """Complete camera calibration result.

    Contains the jointly refined intrinsics and distortion, one pose per
    view, and metadata about the optimization.
    """
    camera_matrix: CameraMatrix
    dist_coeffs: DistortionCoefficients
    reprojection_error: float
    poses: list[Pose]

    image_size: tuple[int, int] = (0, 0)
    per_view_errors: Optional[list[float]] = None
    initial_error: Optional[float] = None
    iterations: int = 0
    status: TerminationStatus = TerminationStatus.CONVERGED

    # Calibration metadata
    timestamp: datetime = field(default_factory=datetime.now)
    software_version: str = __version__
    notes: str = ""

    @property
    def converged(self) -> bool:
        return self.status is TerminationStatus.CONVERGED

    @property
    def num_views(self) -> int:
        return len(self.poses)

    def summary(self) -> str:
        """Generate a human-readable summary of the calibration."""
        K = self.camera_matrix
        D = self.dist_coeffs
        lines = [
            "=" * 50,
            "Camera Calibration Result",
            "=" * 50,
            f"Timestamp: {self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
            f"Software Version: {self.software_version}",
            "",
            "Intrinsic Parameters:",
            f"  Image Size: {self.image_size[0]} x {self.image_size[1]}",
            f"  Focal Length: fx={K.fx:.4f}, fy={K.fy:.4f}",
            f"  Principal Point: cx={K.cx:.4f}, cy={K.cy:.4f}",
            f"  Reprojection Error: {self.reprojection_error:.6f} pixels",
            "",
            f"Distortion Coefficients ({len(D)}):",
            f"  k1={D.k1:.6f}, k2={D.k2:.6f}, k3={D.k3:.6f}",
            f"  p1={D.p1:.6f}, p2={D.p2:.6f}",
        ]
        if D.has_rational:
            lines.append(f"  k4={D.k4:.6f}, k5={D.k5:.6f}, k6={D.k6:.6f}")
        if D.has_thin_prism:
            lines.append(f"  s1={D.s1:.6f}, s2={D.s2:.6f}, s3={D.s3:.6f}, s4={D.s4:.6f}")
        if D.has_tilt:
            lines.append(f"  tauX={D.tau_x:.6f}, tauY={D.tau_y:.6f}")

        lines.extend([
            "",
            f"Optimization: {self.status.value} after {self.iterations} iterations",
        ])
        if self.initial_error is not None:
            lines.append(f"  Initial Error: {self.initial_error:.6f} pixels")
        if self.per_view_errors:
            worst = int(np.argmax(self.per_view_errors))
            lines.append(
                f"  Worst View: #{worst} ({self.per_view_errors[worst]:.6f} pixels)"
            )

        lines.extend([
            "",
            f"Views Used: {self.num_views}",
            "=" * 50,
        ])

        return "\n".join(lines)
