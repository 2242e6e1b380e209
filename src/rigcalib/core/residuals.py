"""
Reprojection residuals and their Jacobian.

Each view's block depends only on its own pose and on the shared
intrinsic/distortion entries, so the Jacobian is block sparse: a dense
column band for the shared entries and a block diagonal for the poses. The
blocks are kept separate and only assembled on request; the normal equations
are accumulated block by block.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from rigcalib.core.distortion import project_points, project_points_with_jacobian
from rigcalib.core.parameters import ParameterLayout
from rigcalib.core.types import (
    CameraMatrix,
    DistortionCoefficients,
    InvalidParameterError,
    Pose,
    View,
)


@dataclass
class ViewBlock:
    """Residual rows of one view.

    Attributes:
        residual: (2n,) observed - predicted, ordered u0, v0, u1, v1, ...
        intrinsic_jacobian: (2n, 4 + n_dist) d(predicted)/d(shared entries).
        pose_jacobian: (2n, 6) d(predicted)/d(rvec, tvec).
    """
    residual: NDArray[np.float64]
    intrinsic_jacobian: Optional[NDArray[np.float64]] = None
    pose_jacobian: Optional[NDArray[np.float64]] = None

    @property
    def cost(self) -> float:
        return float(self.residual @ self.residual)

    @property
    def rms(self) -> float:
        return float(np.sqrt(self.cost / (len(self.residual) // 2)))


@dataclass
class Evaluation:
    """Residuals (and optionally Jacobian blocks) at one parameter vector."""

    layout: ParameterLayout
    blocks: list[ViewBlock]

    @property
    def residual(self) -> NDArray[np.float64]:
        return np.concatenate([b.residual for b in self.blocks])

    @property
    def cost(self) -> float:
        """Sum of squared residuals."""
        return float(sum(b.cost for b in self.blocks))

    @property
    def has_jacobian(self) -> bool:
        return all(b.intrinsic_jacobian is not None for b in self.blocks)

    def _require_jacobian(self) -> None:
        if not self.has_jacobian:
            raise ValueError("evaluation was computed without the Jacobian")

    def dense_jacobian(self) -> NDArray[np.float64]:
        """Full (2 * total points, layout.size) Jacobian of the predictions."""
        self._require_jacobian()
        layout = self.layout
        rows = sum(len(b.residual) for b in self.blocks)
        J = np.zeros((rows, layout.size))
        start = 0
        for i, block in enumerate(self.blocks):
            stop = start + len(block.residual)
            J[start:stop, :layout.n_intrinsic] = block.intrinsic_jacobian
            J[start:stop, layout.pose_slice(i)] = block.pose_jacobian
            start = stop
        return J

    def normal_equations(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """``J^T J`` and ``J^T r`` over the full vector."""
        self._require_jacobian()
        layout = self.layout
        shared = slice(0, layout.n_intrinsic)
        JtJ = np.zeros((layout.size, layout.size))
        Jtr = np.zeros(layout.size)
        for i, block in enumerate(self.blocks):
            Ji = block.intrinsic_jacobian
            Jp = block.pose_jacobian
            r = block.residual
            pose = layout.pose_slice(i)

            JtJ[shared, shared] += Ji.T @ Ji
            cross = Ji.T @ Jp
            JtJ[shared, pose] = cross
            JtJ[pose, shared] = cross.T
            JtJ[pose, pose] = Jp.T @ Jp

            Jtr[shared] += Ji.T @ r
            Jtr[pose] = Jp.T @ r
        return JtJ, Jtr


class ReprojectionProblem:
    """Reprojection error of all views as a function of the flat vector.

    Args:
        views: Calibration views, in the order of the pose blocks.
        layout: Parameter layout.
        max_workers: Threads used to evaluate views; 1 evaluates inline.
    """

    def __init__(self, views: Sequence[View], layout: ParameterLayout, max_workers: int = 1):
        if len(views) != layout.n_views:
            raise InvalidParameterError(
                f"layout expects {layout.n_views} views, got {len(views)}"
            )
        self.views = list(views)
        self.layout = layout
        self.max_workers = max_workers

    @property
    def num_points(self) -> int:
        return sum(v.num_points for v in self.views)

    def evaluate(self, x: NDArray[np.float64], with_jacobian: bool = True) -> Evaluation:
        """Residuals at ``x``, with the Jacobian blocks when requested."""
        camera, dist, poses = self.layout.unpack(x)
        n_dist = self.layout.n_dist

        def evaluate_view(index: int) -> ViewBlock:
            view = self.views[index]
            if not with_jacobian:
                predicted = project_points(view.object_points, poses[index], camera, dist)
                return ViewBlock(residual=(view.image_points - predicted).ravel())
            predicted, jac = project_points_with_jacobian(
                view.object_points, poses[index], camera, dist
            )
            return ViewBlock(
                residual=(view.image_points - predicted).ravel(),
                intrinsic_jacobian=jac.intrinsic_block(n_dist),
                pose_jacobian=jac.pose_block(),
            )

        indices = range(len(self.views))
        if self.max_workers > 1 and len(self.views) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                blocks = list(executor.map(evaluate_view, indices))
        else:
            blocks = [evaluate_view(i) for i in indices]
        return Evaluation(layout=self.layout, blocks=blocks)


def reproject(
    view: View,
    camera_matrix: CameraMatrix,
    dist_coeffs: DistortionCoefficients,
    pose: Pose,
) -> NDArray[np.float64]:
    """Predicted pixel positions of a view's rig points."""
    return project_points(view.object_points, pose, camera_matrix, dist_coeffs)


def compute_reprojection_errors(
    views: Sequence[View],
    camera_matrix: CameraMatrix,
    dist_coeffs: DistortionCoefficients,
    poses: Sequence[Pose],
) -> tuple[float, list[float]]:
    """RMS reprojection error overall and per view.

    The overall value is ``sqrt(sum of squared residuals / number of points)``.
    """
    if len(views) != len(poses):
        raise InvalidParameterError(f"{len(views)} views but {len(poses)} poses")
    total = 0.0
    count = 0
    per_view = []
    for view, pose in zip(views, poses):
        diff = view.image_points - reproject(view, camera_matrix, dist_coeffs, pose)
        sq = float(np.sum(diff ** 2))
        per_view.append(float(np.sqrt(sq / view.num_points)))
        total += sq
        count += view.num_points
    return float(np.sqrt(total / count)), per_view
