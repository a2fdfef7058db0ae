"""
Fit a spline kernel transform from landmark files

This script demonstrates the workflow from landmark files to a saved
transform parameter file, optionally warping an extra point file.

Example:
    python scripts/run_landmark_transform.py -fp fixed.txt -mp moving.txt \
        --dimension 3 --out output/
"""

import sys
import argparse
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from spline_kernel_registration.preprocessing.grid_geometry import geometry_from_sequences
from spline_kernel_registration.registration import SplineKernelTransformComponent, transform_point_file
from spline_kernel_registration.utils.config import LandmarksConfig, load_config
from spline_kernel_registration.utils.exceptions import SplineKernelError
from spline_kernel_registration.utils.logging import configure_logging, setup_logger


def main() -> int:
    """
    Main function to fit and save the landmark transform.
    """
    parser = argparse.ArgumentParser(description="Spline kernel landmark transform")
    parser.add_argument("-fp", type=str, default=None, help="Fixed image (source) landmark file")
    parser.add_argument("-ipp", type=str, default=None, help="Deprecated alias of -fp")
    parser.add_argument("-mp", type=str, default=None, help="Moving image (target) landmark file")
    parser.add_argument(
        "-def",
        dest="points",
        type=str,
        default=None,
        help="Point file to warp with the fitted transform",
    )
    parser.add_argument("--out", type=str, default="output", help="Output directory")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument("--dimension", type=int, default=3, help="Spatial dimension of the landmarks")
    parser.add_argument("--origin", type=float, nargs="+", default=None, help="Grid origin for index landmarks")
    parser.add_argument("--spacing", type=float, nargs="+", default=None, help="Grid spacing for index landmarks")
    parser.add_argument(
        "--direction",
        type=float,
        nargs="+",
        default=None,
        help="Grid direction cosines, row-major (identity if omitted)",
    )
    args = parser.parse_args()

    cfg = load_config(args.config)
    configure_logging(cfg.logging.level, cfg.logging.file)
    logger = setup_logger("spline_kernel_registration.scripts")

    arguments = {"-fp": args.fp, "-ipp": args.ipp, "-mp": args.mp}
    cli_landmarks = LandmarksConfig.from_arguments(
        {k: v for k, v in arguments.items() if v},
        use_composition=cfg.landmarks.use_composition,
        log=logger,
    )
    # Command-line landmark files take precedence over the YAML ones
    cfg.landmarks = LandmarksConfig(
        fixed_points=cli_landmarks.fixed_points or cfg.landmarks.fixed_points,
        moving_points=cli_landmarks.moving_points or cfg.landmarks.moving_points,
        use_composition=cfg.landmarks.use_composition,
    )

    geometry = None
    if args.origin is not None or args.spacing is not None:
        origin = args.origin or [0.0] * args.dimension
        spacing = args.spacing or [1.0] * args.dimension
        geometry = geometry_from_sequences(origin, spacing, args.direction)
        logger.info(f"Using grid geometry {geometry}")

    component = SplineKernelTransformComponent(
        cfg,
        args.dimension,
        fixed_geometry=geometry,
        moving_geometry=geometry,
        log=logger,
    )
    if component.before_all() != 0:
        return 1

    out_dir = Path(args.out)
    try:
        transform = component.before_registration()
        component.write_to_file(out_dir / "TransformParameters.0.txt")
        if args.points:
            transform_point_file(transform, args.points, out_dir / "outputpoints.txt", geometry=geometry)
    except SplineKernelError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    logger.info("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
