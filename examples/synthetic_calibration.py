"""
Synthetic calibration example

Usage:
    python examples/synthetic_calibration.py --views 10 --noise 0.3 --output calibration/synthetic.h5

Generates views of a planar grid with a known camera, calibrates from them,
prints the recovered parameters and saves the result.
"""

import argparse
from pathlib import Path

import numpy as np

from rigcalib import CalibrationConfig, CameraMatrix, DistortionCoefficients, calibrate_camera
from rigcalib.io import CalibrationFile
from rigcalib.synthetic import look_at_pose, make_views, planar_grid
from rigcalib.utils.logging import setup_logging

IMAGE_SIZE = (1280, 960)
TRUE_CAMERA = CameraMatrix(fx=1150.0, fy=1140.0, cx=642.0, cy=478.0)
TRUE_DISTORTION = DistortionCoefficients([-0.28, 0.11, 0.0009, -0.0006, -0.02])


def random_poses(count: int, board_center: np.ndarray, rng: np.random.Generator) -> list:
    """Camera poses scattered on a cap above the board, all looking at it."""
    poses = []
    for _ in range(count):
        offset = np.array([
            rng.uniform(-0.25, 0.25),
            rng.uniform(-0.25, 0.25),
            -rng.uniform(0.5, 0.8),
        ])
        aim = board_center + rng.normal(scale=0.01, size=3) * [1.0, 1.0, 0.0]
        poses.append(look_at_pose(board_center + offset, aim))
    return poses


def main():
    parser = argparse.ArgumentParser(description="Calibrate a simulated camera")
    parser.add_argument("--views", type=int, default=10, help="Number of views")
    parser.add_argument("--noise", type=float, default=0.3, help="Pixel noise (std dev)")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--rational", action="store_true", help="Use the 8 coefficient model")
    parser.add_argument("--output", type=Path, default=None, help="Save result (.h5/.mat/.json)")
    args = parser.parse_args()

    setup_logging("INFO")
    rng = np.random.default_rng(args.seed)

    board = planar_grid(9, 6, spacing=0.03)
    board_center = board.mean(axis=0)
    poses = random_poses(args.views, board_center, rng)
    views = make_views(board, poses, TRUE_CAMERA, TRUE_DISTORTION, noise=args.noise, rng=rng)

    config = CalibrationConfig(rational_model=args.rational)
    result = calibrate_camera(views, IMAGE_SIZE, config)

    print(result.summary())
    print()
    print("Ground truth:")
    print(f"  fx={TRUE_CAMERA.fx:.4f}, fy={TRUE_CAMERA.fy:.4f}")
    print(f"  cx={TRUE_CAMERA.cx:.4f}, cy={TRUE_CAMERA.cy:.4f}")
    print(f"  distortion={np.array2string(TRUE_DISTORTION.values, precision=6)}")

    if args.output is not None:
        path = CalibrationFile.save(args.output, result)
        print(f"\nSaved: {path}")


if __name__ == "__main__":
    main()
