"""
Camera calibration from views of a known rig.

This module ties the stages together: closed-form (or user supplied) initial
intrinsics, per-view pose initialization, and the joint Levenberg-Marquardt
refinement of intrinsics, distortion and all poses.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence, Union

import numpy as np
from numpy.typing import ArrayLike

from rigcalib.core.config import CalibrationConfig
from rigcalib.core.intrinsic import image_center, init_camera_matrix_2d
from rigcalib.core.optimizer import LevenbergMarquardt
from rigcalib.core.parameters import ParameterLayout
from rigcalib.core.pose import PoseSolver, estimate_poses
from rigcalib.core.residuals import ReprojectionProblem
from rigcalib.core.solvers import LinearSolver, make_solver
from rigcalib.core.types import (
    CalibrationResult,
    CameraMatrix,
    DistortionCoefficients,
    InsufficientViewsError,
    InvalidParameterError,
    View,
)
from rigcalib.utils.logging import get_logger

logger = get_logger("core.calibrator")

ProgressCallback = Callable[[int, int, str], None]


def _validate_image_size(image_size: Sequence[int]) -> tuple[int, int]:
    try:
        width, height = (int(v) for v in image_size)
    except (TypeError, ValueError):
        raise InvalidParameterError(
            f"image_size must be (width, height), got {image_size!r}"
        ) from None
    if width <= 0 or height <= 0:
        raise InvalidParameterError(f"image size must be positive, got {(width, height)}")
    return width, height


def _validate_guess(camera: CameraMatrix, image_size: tuple[int, int]) -> None:
    width, height = image_size
    if not (np.isfinite(camera.as_array()).all() and camera.fx > 0 and camera.fy > 0):
        raise InvalidParameterError(
            f"focal lengths must be positive, got fx={camera.fx}, fy={camera.fy}"
        )
    if not (0 <= camera.cx < width and 0 <= camera.cy < height):
        raise InvalidParameterError(
            f"principal point ({camera.cx}, {camera.cy}) lies outside the "
            f"{width}x{height} image"
        )


def _initial_camera(
    views: Sequence[View],
    image_size: tuple[int, int],
    config: CalibrationConfig,
    solver: LinearSolver,
) -> CameraMatrix:
    guess = config.camera_matrix_guess
    if config.use_intrinsic_guess:
        _validate_guess(guess, image_size)
        logger.info("Using the supplied camera matrix as initial estimate")
        return CameraMatrix(guess.fx, guess.fy, guess.cx, guess.cy)

    aspect_ratio = None
    if config.fix_aspect_ratio:
        if guess is None:
            aspect_ratio = 1.0
        elif guess.fx > 0 and guess.fy > 0:
            aspect_ratio = guess.aspect_ratio
        else:
            raise InvalidParameterError(
                f"fix_aspect_ratio needs positive focal lengths in the guess, "
                f"got fx={guess.fx}, fy={guess.fy}"
            )
    principal_point = image_center(image_size) if config.fix_principal_point else None

    return init_camera_matrix_2d(
        views,
        image_size,
        aspect_ratio=aspect_ratio,
        principal_point=principal_point,
        solver=solver,
    )


def _initial_distortion(config: CalibrationConfig, layout: ParameterLayout) -> DistortionCoefficients:
    if config.dist_coeffs_guess is not None:
        guess = config.dist_coeffs_guess.resized(layout.n_dist).values
    else:
        guess = np.zeros(layout.n_dist)

    if config.use_intrinsic_guess:
        values = guess.copy()
    else:
        # Only held coefficients keep the caller's value
        values = np.where(layout.mask.distortion, 0.0, guess)
    values[list(layout.forced_zero)] = 0.0
    return DistortionCoefficients(values)


class CameraCalibrator:
    """Joint intrinsic/extrinsic calibrator.

    Collects views of a calibration rig and refines the camera matrix,
    distortion coefficients and one pose per view.

    Example:
        >>> calibrator = CameraCalibrator(CalibrationConfig(rational_model=True))
        >>> for obj, img in correspondences:
        ...     calibrator.add_view(obj, img)
        >>> result = calibrator.calibrate((1280, 960))
        >>> print(result.summary())
    """

    def __init__(
        self,
        config: Optional[CalibrationConfig] = None,
        pose_solver: Optional[PoseSolver] = None,
    ):
        """Initialize the calibrator.

        Args:
            config: Calibration options (defaults when omitted).
            pose_solver: Per-view pose strategy (``cv2.solvePnP`` by default).
        """
        self.config = config or CalibrationConfig()
        self.pose_solver = pose_solver
        self._views: list[View] = []

    def add_view(
        self,
        object_points: Union[View, ArrayLike],
        image_points: Optional[ArrayLike] = None,
    ) -> View:
        """Add one view.

        Args:
            object_points: A :class:`View`, or (N, 3) rig coordinates.
            image_points: (N, 2) pixel coordinates when ``object_points`` is
                an array.

        Returns:
            The stored View.

        Raises:
            InvalidParameterError: If the arrays are malformed or mismatched.
        """
        if isinstance(object_points, View):
            view = object_points
        else:
            if image_points is None:
                raise InvalidParameterError("image_points are required with object_points")
            view = View(object_points, image_points)
        self._views.append(view)
        logger.debug(f"Added view with {view.num_points} points ({len(self._views)} total)")
        return view

    def add_views(self, views: Iterable[Union[View, tuple[ArrayLike, ArrayLike]]]) -> None:
        """Add several views (View objects or (object, image) pairs)."""
        for item in views:
            if isinstance(item, View):
                self.add_view(item)
            else:
                self.add_view(*item)

    @property
    def num_views(self) -> int:
        return len(self._views)

    @property
    def views(self) -> list[View]:
        return list(self._views)

    @property
    def can_calibrate(self) -> bool:
        """Check if at least one view has been added."""
        return self.num_views > 0

    def clear(self) -> None:
        """Remove all views."""
        self._views.clear()
        logger.info("Calibrator cleared")

    def calibrate(
        self,
        image_size: Sequence[int],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> CalibrationResult:
        """Run the calibration.

        Args:
            image_size: (width, height) in pixels.
            progress_callback: Optional callback(current, total, message).

        Returns:
            CalibrationResult with refined intrinsics, distortion and poses.

        Raises:
            InsufficientViewsError: No views, or too few planar views to
                bootstrap the intrinsics without a guess.
            InvalidParameterError: Bad image size or invalid guess.
            DegenerateGeometryError: The views cannot determine the camera.
            PoseEstimationError: A view pose could not be initialized.
        """
        if not self.can_calibrate:
            raise InsufficientViewsError("calibration needs at least one view")
        image_size = _validate_image_size(image_size)
        config = self.config
        views = self._views

        def report(current: int, message: str) -> None:
            if progress_callback:
                progress_callback(current, 100, message)

        report(0, "Starting calibration...")
        logger.info(
            f"Starting calibration with {len(views)} views, "
            f"{sum(v.num_points for v in views)} points, image size: {image_size}"
        )

        solver = make_solver(config.use_lu)

        report(10, "Initializing intrinsics...")
        camera = _initial_camera(views, image_size, config, solver)
        layout = ParameterLayout.from_config(config, len(views), aspect_ratio=camera.aspect_ratio)
        dist = _initial_distortion(config, layout)
        logger.info(
            f"Initial intrinsics: fx={camera.fx:.3f} fy={camera.fy:.3f} "
            f"cx={camera.cx:.3f} cy={camera.cy:.3f}, {layout.n_dist} distortion coefficients"
        )

        report(20, "Estimating view poses...")
        poses = estimate_poses(views, camera, dist, solver=self.pose_solver)

        report(30, "Refining parameters...")
        logger.info(
            f"Refining {layout.n_free} free parameters "
            f"({', '.join(layout.mask.free_names())} and {len(views)} poses)"
        )
        problem = ReprojectionProblem(views, layout, max_workers=config.max_workers)
        optimizer = LevenbergMarquardt(problem, criteria=config.criteria, solver=solver)
        outcome = optimizer.run(layout.pack(camera, dist, poses))

        report(90, "Computing per-view errors...")
        camera, dist, poses = layout.unpack(outcome.x)
        num_points = problem.num_points
        rms = float(np.sqrt(outcome.cost / num_points))
        initial_rms = float(np.sqrt(outcome.initial_cost / num_points))
        per_view_errors = [block.rms for block in outcome.evaluation.blocks]

        report(100, "Calibration complete")
        logger.info(
            f"Calibration {outcome.status.value} after {outcome.iterations} iterations, "
            f"RMS error: {initial_rms:.4f} -> {rms:.4f} pixels"
        )

        return CalibrationResult(
            camera_matrix=camera,
            dist_coeffs=dist,
            reprojection_error=rms,
            poses=poses,
            image_size=image_size,
            per_view_errors=per_view_errors,
            initial_error=initial_rms,
            iterations=outcome.iterations,
            status=outcome.status,
        )


def calibrate_camera(
    views: Iterable[Union[View, tuple[ArrayLike, ArrayLike]]],
    image_size: Sequence[int],
    config: Optional[CalibrationConfig] = None,
    pose_solver: Optional[PoseSolver] = None,
) -> CalibrationResult:
    """Convenience function for a one-shot calibration.

    Args:
        views: Views of the rig, as View objects or (object, image) pairs.
        image_size: (width, height) in pixels.
        config: Calibration options.
        pose_solver: Optional per-view pose strategy.

    Returns:
        CalibrationResult.
    """
    calibrator = CameraCalibrator(config, pose_solver=pose_solver)
    calibrator.add_views(views)
    return calibrator.calibrate(image_size)
