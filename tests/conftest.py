"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest

from rigcalib.core.types import CameraMatrix, DistortionCoefficients, Pose
from rigcalib.synthetic import look_at_pose, make_views, planar_grid

IMAGE_SIZE = (640, 480)

GRID_COLS = 8
GRID_ROWS = 6
GRID_SPACING = 0.04

# Camera centers relative to the board center (meters)
CAMERA_OFFSETS = [
    (-0.20, -0.10, -0.60),
    (0.22, -0.08, -0.62),
    (0.02, 0.22, -0.55),
    (-0.16, 0.16, -0.66),
    (0.16, 0.14, -0.52),
    (0.00, -0.20, -0.58),
    (0.05, 0.02, -0.70),
]


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def image_size():
    return IMAGE_SIZE


@pytest.fixture
def camera():
    """Ground-truth intrinsics for a 640x480 sensor."""
    return CameraMatrix(fx=810.0, fy=790.0, cx=322.0, cy=243.5)


@pytest.fixture
def distortion():
    """Moderate barrel distortion with a little decentering."""
    return DistortionCoefficients([-0.21, 0.09, 0.0012, -0.0008, -0.015])


@pytest.fixture
def board():
    """Planar calibration grid (z = 0)."""
    return planar_grid(GRID_COLS, GRID_ROWS, GRID_SPACING)


@pytest.fixture
def board_center():
    return np.array([(GRID_COLS - 1) * GRID_SPACING / 2, (GRID_ROWS - 1) * GRID_SPACING / 2, 0.0])


@pytest.fixture
def poses(board_center):
    """Views looking at the board from varied directions."""
    result = []
    for i, offset in enumerate(CAMERA_OFFSETS):
        # Shift the aim point a little so the board does not always sit at the center
        aim = board_center + np.array([0.01 * (i % 3 - 1), 0.01 * (i % 2), 0.0])
        y_hint = (np.sin(0.1 * i), np.cos(0.1 * i), 0.0)
        result.append(look_at_pose(board_center + np.array(offset), aim, y_hint=y_hint))
    return result


@pytest.fixture
def views(board, poses, camera, distortion):
    """Noiseless views of the board."""
    return make_views(board, poses, camera, distortion)


@pytest.fixture
def sample_pose():
    return Pose(rotation_vector=[0.12, -0.25, 0.05], translation_vector=[-0.1, 0.05, 0.8])


@pytest.fixture
def sample_points():
    """Non-planar points in front of ``sample_pose``."""
    rng = np.random.default_rng(7)
    return rng.uniform(-0.2, 0.2, size=(25, 3))
