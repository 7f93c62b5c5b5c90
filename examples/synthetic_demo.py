#!/usr/bin/env python3
"""Demo script registering a simulated device against a fixed depth camera.

The reference camera looks at a textured plane 2 m away. The device image
is rendered from the reference image with the plane homography, so every
frame has a known ground-truth pose.

Usage:
    uv run python examples/synthetic_demo.py
    uv run python examples/synthetic_demo.py --config config/estimator.yaml --frames 50 -v
"""

import argparse
import logging
from pathlib import Path

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from camreg import (
    SE3,
    CameraIntrinsics,
    EstimatorParameters,
    FeatureDetector,
    FeaturesMemory,
    PoseEstimator,
    load_reference_to_world,
)

IMAGE_SIZE = (640, 480)
PLANE_DEPTH_M = 2.0


def make_reference_view(seed: int) -> tuple[np.ndarray, np.ndarray]:
    """Create a textured reference image and its depth map (mm) with holes."""
    rng = np.random.default_rng(seed)
    width, height = IMAGE_SIZE
    noise = rng.integers(0, 256, size=(height, width), dtype=np.uint8)
    image = cv2.GaussianBlur(noise, (5, 5), 0)

    depth = np.full((height, width), PLANE_DEPTH_M * 1000.0, dtype=np.uint16)
    for _ in range(40):
        x, y = rng.integers(0, width - 20), rng.integers(0, height - 20)
        depth[y : y + rng.integers(3, 20), x : x + rng.integers(3, 20)] = 0
    return image, depth


def render_device_view(
    reference_image: np.ndarray,
    reference_intrinsics: CameraIntrinsics,
    device_intrinsics: CameraIntrinsics,
    device_pose: SE3,
) -> np.ndarray:
    """Render the plane as seen by the device at ``device_pose`` (reference frame)."""
    R_t = device_pose.rotation.T
    normal = np.array([[0.0, 0.0, 1.0]])
    H = (
        device_intrinsics.to_matrix()
        @ (R_t - (R_t @ device_pose.translation.reshape(3, 1)) @ normal / PLANE_DEPTH_M)
        @ np.linalg.inv(reference_intrinsics.to_matrix())
    )
    return cv2.warpPerspective(reference_image, H, IMAGE_SIZE)


def main() -> None:
    """Run the synthetic registration demo."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).resolve().parents[1] / "config" / "estimator.yaml",
        help="Estimator YAML configuration",
    )
    parser.add_argument("--frames", type=int, default=30, help="Number of device frames")
    parser.add_argument("--seed", type=int, default=0, help="Scene random seed")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Configuration
    parameters = EstimatorParameters.from_yaml(args.config)
    reference_to_world = load_reference_to_world(args.config)
    reference_intrinsics = CameraIntrinsics(fx=525.0, fy=525.0, cx=319.5, cy=239.5)
    device_intrinsics = CameraIntrinsics(fx=600.0, fy=600.0, cx=320.0, cy=240.0)

    # Initialize
    print("Initializing pose estimator...")
    memory = FeaturesMemory(max_features=2000, depth_tolerance=50.0)
    estimator = PoseEstimator(
        device_id="synthetic-device",
        parameters=parameters,
        reference_to_world=reference_to_world,
        features_memory=memory,
    )
    device_detector = FeatureDetector(
        n_features=parameters.orb_max_points,
        scale_factor=parameters.orb_scale_factor,
        n_levels=parameters.orb_levels_number,
    )
    reference_image, depth_template = make_reference_view(args.seed)

    print(f"Processing {args.frames} frames...")
    print()
    print(
        f"{'Frame':>6} {'Status':^30} {'Raw':>5} {'Corr':>5} {'Inlr':>5} {'Err':>6} "
        f"{'Mem':>5} {'Total':>7} | {'Position error'}"
    )
    print("-" * 90)

    accepted = 0
    errors = []
    for i in range(args.frames):
        # Device sweeps sideways while slowly turning
        t = i / max(args.frames - 1, 1)
        device_pose = SE3(
            rotation=Rotation.from_euler("yx", [10.0 * (t - 0.5), 3.0], degrees=True).as_matrix(),
            translation=np.array([0.3 * (t - 0.5), -0.05, 0.3]),
        )
        device_image = render_device_view(
            reference_image, reference_intrinsics, device_intrinsics, device_pose
        )
        source = device_detector.detect(device_image)

        result = estimator.process_features(
            source,
            device_intrinsics,
            reference_image,
            depth_template.copy(),
            reference_intrinsics,
            timestamp_ns=i * 33_000_000,
        )

        position_error = float("nan")
        if result.is_accepted:
            accepted += 1
            truth = (reference_to_world @ device_pose).position
            position_error = float(np.linalg.norm(result.estimate.position - truth))
            errors.append(position_error)

        print(
            f"{i:6d} {result.status.value:^30} {result.num_raw_matches:5d} "
            f"{result.num_correspondences:5d} {result.num_inliers:5d} "
            f"{result.reprojection_error:6.2f} {len(memory):5d} "
            f"{result.timing.total_ms:6.1f}ms | {position_error:.4f} m"
        )

    print()
    print(f"Accepted {accepted}/{args.frames} frames")
    if errors:
        print(f"Mean position error: {np.mean(errors):.4f} m (max {np.max(errors):.4f} m)")


if __name__ == "__main__":
    main()
