"""
Tests for rigcalib.core.homography.
"""

import numpy as np
import pytest

from rigcalib.core.homography import find_homography, view_homography
from rigcalib.core.types import DegenerateGeometryError, View

H_TRUE = np.array([
    [620.0, 35.0, 300.0],
    [-20.0, 590.0, 210.0],
    [0.08, -0.05, 1.0],
])


def _apply(H, plane_points):
    homog = np.column_stack([plane_points, np.ones(len(plane_points))]) @ H.T
    return homog[:, :2] / homog[:, 2:]


class TestFindHomography:
    def test_recovers_exact_homography(self, board):
        image = _apply(H_TRUE, board[:, :2])
        H = find_homography(board, image)
        assert H[2, 2] == pytest.approx(1.0)
        np.testing.assert_allclose(H, H_TRUE, rtol=1e-8, atol=1e-8)

    def test_accepts_plane_coordinates(self, board):
        image = _apply(H_TRUE, board[:, :2])
        np.testing.assert_allclose(find_homography(board[:, :2], image), H_TRUE, rtol=1e-8, atol=1e-8)

    def test_four_points(self):
        plane = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
        H = find_homography(plane, _apply(H_TRUE, plane))
        np.testing.assert_allclose(H, H_TRUE, rtol=1e-8, atol=1e-8)

    def test_noisy_points(self, board):
        rng = np.random.default_rng(3)
        image = _apply(H_TRUE, board[:, :2]) + rng.normal(0.0, 0.2, (len(board), 2))
        H = find_homography(board, image)
        np.testing.assert_allclose(_apply(H, board[:, :2]), _apply(H_TRUE, board[:, :2]), atol=0.5)

    def test_three_collinear_points(self):
        plane = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
        with pytest.raises(DegenerateGeometryError):
            find_homography(plane, plane * 10.0)

    def test_many_collinear_points(self):
        plane = np.column_stack([np.linspace(0.0, 1.0, 6), np.linspace(0.0, 0.5, 6)])
        image = np.column_stack([np.linspace(10.0, 90.0, 6), np.linspace(5.0, 40.0, 6)])
        with pytest.raises(DegenerateGeometryError):
            find_homography(plane, image)

    def test_collinear_image_points(self, board):
        image = np.column_stack([np.arange(len(board), dtype=float), np.zeros(len(board))])
        with pytest.raises(DegenerateGeometryError):
            find_homography(board, image)

    def test_non_planar_rig(self, board):
        lifted = board.copy()
        lifted[::3, 2] = 0.1
        with pytest.raises(DegenerateGeometryError):
            find_homography(lifted, _apply(H_TRUE, board[:, :2]))

    def test_view_homography(self, board):
        view = View(board, _apply(H_TRUE, board[:, :2]))
        np.testing.assert_allclose(view_homography(view), H_TRUE, rtol=1e-8, atol=1e-8)
