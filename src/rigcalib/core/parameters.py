"""
Flat parameter vector layout.

The optimizer works on one vector::

    [fx, fy, cx, cy, d_0 .. d_{n_dist-1}, rvec_0, tvec_0, rvec_1, tvec_1, ...]

where ``n_dist`` is 5, 8, 12 or 14 depending on the enabled model groups.
Which entries are free is decided once from the options, so the layout is
never re-derived inside the optimization loop.

Entry kinds:

- free: written by every accepted optimizer step;
- fixed: copied through unchanged, never written;
- dependent: fx when the aspect ratio is fixed, kept at ``ratio * fy`` by
  folding its Jacobian column into fy's.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from rigcalib.core.config import CalibrationConfig
from rigcalib.core.types import (
    ActiveParameterMask,
    CameraMatrix,
    DistortionCoefficients,
    InvalidParameterError,
    Pose,
)

NUM_INTRINSICS = 4
POSE_SIZE = 6

FX, FY, CX, CY = range(NUM_INTRINSICS)

# Distortion vector indices of each group
RADIAL = (0, 1, 4)
TANGENTIAL = (2, 3)
RATIONAL = (5, 6, 7)
THIN_PRISM = (8, 9, 10, 11)
TILT = (12, 13)


@dataclass
class ParameterLayout:
    """Mapping between the flat vector and the calibration quantities.

    Attributes:
        n_views: Number of views (pose blocks).
        n_dist: Distortion vector length (5, 8, 12 or 14).
        mask: Free flags of the intrinsic and distortion scalars.
        forced_zero: Distortion indices pinned at zero (zero tangential
            distortion, coefficients of disabled groups).
        aspect_ratio: fx / fy to maintain, or None when fx is free/fixed on
            its own.
    """
    n_views: int
    n_dist: int
    mask: ActiveParameterMask
    forced_zero: tuple[int, ...] = ()
    aspect_ratio: Optional[float] = None

    def __post_init__(self) -> None:
        if len(self.mask.distortion) != self.n_dist:
            raise InvalidParameterError(
                f"distortion mask has {len(self.mask.distortion)} entries, expected {self.n_dist}"
            )
        if self.aspect_ratio is not None:
            if self.mask.intrinsics[FX]:
                raise InvalidParameterError("fx cannot be free when it follows fy")
            if not self.aspect_ratio > 0:
                raise InvalidParameterError(f"aspect ratio must be positive, got {self.aspect_ratio}")

        full = np.concatenate([self.mask.as_array(), np.ones(POSE_SIZE * self.n_views, dtype=bool)])
        self._free_indices = np.flatnonzero(full)

    @classmethod
    def from_config(
        cls,
        config: CalibrationConfig,
        n_views: int,
        aspect_ratio: Optional[float] = None,
    ) -> ParameterLayout:
        """Resolve the options into a layout.

        Args:
            config: Calibration options.
            n_views: Number of views.
            aspect_ratio: fx / fy of the initial camera, required when
                ``config.fix_aspect_ratio`` is set.
        """
        n_dist = config.distortion_length

        intrinsics = np.ones(NUM_INTRINSICS, dtype=bool)
        if config.fix_aspect_ratio:
            if aspect_ratio is None:
                raise InvalidParameterError("fix_aspect_ratio needs the initial aspect ratio")
            intrinsics[FX] = False
        else:
            aspect_ratio = None
        if config.fix_principal_point:
            intrinsics[CX] = intrinsics[CY] = False

        distortion = np.ones(n_dist, dtype=bool)
        forced_zero: list[int] = []

        for index, fixed in zip(RADIAL, (config.fix_k1, config.fix_k2, config.fix_k3)):
            distortion[index] = not fixed
        if config.zero_tangent_dist:
            distortion[list(TANGENTIAL)] = False
            forced_zero.extend(TANGENTIAL)

        groups = (
            (RATIONAL, config.rational_model, (config.fix_k4, config.fix_k5, config.fix_k6)),
            (THIN_PRISM, config.thin_prism_model, (config.fix_s1_s2_s3_s4,) * 4),
            (TILT, config.tilted_model, (config.fix_tau_x_tau_y,) * 2),
        )
        for indices, enabled, fixed_flags in groups:
            for index, fixed in zip(indices, fixed_flags):
                if index >= n_dist:
                    continue
                if not enabled:
                    # Present in the vector only because a later group is on
                    distortion[index] = False
                    forced_zero.append(index)
                else:
                    distortion[index] = not fixed

        return cls(
            n_views=n_views,
            n_dist=n_dist,
            mask=ActiveParameterMask(intrinsics=intrinsics, distortion=distortion),
            forced_zero=tuple(sorted(forced_zero)),
            aspect_ratio=aspect_ratio,
        )

    @property
    def n_intrinsic(self) -> int:
        """Number of shared (intrinsic + distortion) entries."""
        return NUM_INTRINSICS + self.n_dist

    @property
    def size(self) -> int:
        return self.n_intrinsic + POSE_SIZE * self.n_views

    @property
    def free_indices(self) -> NDArray[np.intp]:
        return self._free_indices

    @property
    def n_free(self) -> int:
        return len(self._free_indices)

    def pose_slice(self, view_index: int) -> slice:
        start = self.n_intrinsic + POSE_SIZE * view_index
        return slice(start, start + POSE_SIZE)

    def selection_matrix(self) -> NDArray[np.float64]:
        """(size, n_free) matrix S with ``x_new = x + S @ delta``.

        Columns are unit vectors on the free entries; the fy column also
        carries ``ratio`` in the fx row when fx is dependent.
        """
        S = np.zeros((self.size, self.n_free))
        S[self._free_indices, np.arange(self.n_free)] = 1.0
        if self.aspect_ratio is not None and self.mask.intrinsics[FY]:
            fy_column = int(np.searchsorted(self._free_indices, FY))
            S[FX, fy_column] = self.aspect_ratio
        return S

    def apply_step(self, x: NDArray[np.float64], delta: NDArray[np.float64]) -> NDArray[np.float64]:
        """New vector with ``delta`` added to the free (and dependent) entries.

        Fixed entries are copied bit for bit.
        """
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (self.n_free,):
            raise ValueError(f"step must have shape ({self.n_free},), got {delta.shape}")
        x_new = np.array(x, dtype=np.float64, copy=True)
        x_new[self._free_indices] += delta
        if self.aspect_ratio is not None and self.mask.intrinsics[FY]:
            x_new[FX] = self.aspect_ratio * x_new[FY]
        return x_new

    def pack(
        self,
        camera_matrix: CameraMatrix,
        dist_coeffs: DistortionCoefficients,
        poses: Sequence[Pose],
    ) -> NDArray[np.float64]:
        """Flatten the calibration quantities into a parameter vector."""
        if len(poses) != self.n_views:
            raise InvalidParameterError(f"expected {self.n_views} poses, got {len(poses)}")
        if len(dist_coeffs) != self.n_dist:
            raise InvalidParameterError(
                f"expected {self.n_dist} distortion coefficients, got {len(dist_coeffs)}"
            )
        x = np.empty(self.size)
        x[:NUM_INTRINSICS] = camera_matrix.as_array()
        x[NUM_INTRINSICS:self.n_intrinsic] = dist_coeffs.values
        for i, pose in enumerate(poses):
            block = self.pose_slice(i)
            x[block] = np.concatenate([pose.rotation_vector, pose.translation_vector])
        return x

    def unpack(
        self, x: NDArray[np.float64]
    ) -> tuple[CameraMatrix, DistortionCoefficients, list[Pose]]:
        """Inverse of :meth:`pack`."""
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (self.size,):
            raise ValueError(f"parameter vector must have shape ({self.size},), got {x.shape}")
        camera = CameraMatrix(*x[:NUM_INTRINSICS])
        dist = DistortionCoefficients(x[NUM_INTRINSICS:self.n_intrinsic])
        poses = []
        for i in range(self.n_views):
            block = x[self.pose_slice(i)]
            poses.append(Pose(rotation_vector=block[:3], translation_vector=block[3:]))
        return camera, dist, poses
