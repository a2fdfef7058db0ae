"""
Transform parameter files

Saves and restores a fitted KernelTransform: a generic header with the
transform name, dimension and free parameters (the kernel weights),
followed by the spline kernel section written by the codec.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import numpy as np

from .kernel_transform import KernelTransform
from .parameter_codec import decode, encode, format_directive, parse_parameter_text
from ..utils.exceptions import ConfigurationError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

TRANSFORM_NAME = "SplineKernelTransform"


def format_transform_parameters(transform: KernelTransform) -> str:
    """Render the complete parameter record of a fitted transform."""
    header = [
        format_directive("Transform", TRANSFORM_NAME),
        format_directive("FixedImageDimension", transform.dimension),
        format_directive("TransformParameters", [float(v) for v in transform.get_parameters()]),
    ]
    return "\n".join(header) + "\n\n" + encode(transform.get_state())


def parse_transform_parameters(text: str, dimension: Optional[int] = None) -> KernelTransform:
    """
    Rebuild a transform from a complete parameter record.

    The kernel type and source landmarks are restored first (which inverts
    the kernel system), the weights afterwards. Without TransformParameters
    the transform is set to identity.
    """
    record = parse_parameter_text(text)

    name = (record.get("Transform") or [TRANSFORM_NAME])[0]
    if name != TRANSFORM_NAME:
        raise ConfigurationError(f"Expected a {TRANSFORM_NAME} parameter record", value=name)

    state = decode(record, dimension=dimension)
    if state.fixed_parameters is None:
        raise ConfigurationError("the FixedImageLandmarks are empty in the transform parameter file")

    transform = KernelTransform.from_state(state)

    weights = record.get("TransformParameters")
    if weights:
        try:
            vector = np.asarray([float(v) for v in weights], dtype=np.float64)
        except ValueError:
            raise ConfigurationError("TransformParameters contains a non-numeric value") from None
        transform.set_parameters(vector)
    else:
        logger.warning("No TransformParameters in the parameter record; using identity.")
        transform.set_identity()
    return transform


def write_transform_parameter_file(transform: KernelTransform, path: Union[str, Path]) -> Path:
    """Write the parameter record of ``transform`` to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_transform_parameters(transform), encoding="utf-8")
    logger.info(f"Saved transform parameters to {path}")
    return path


def read_transform_parameter_file(path: Union[str, Path], dimension: Optional[int] = None) -> KernelTransform:
    """Read a transform parameter file written by ``write_transform_parameter_file``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Transform parameter file not found: {path}")
    transform = parse_transform_parameters(path.read_text(encoding="utf-8"), dimension=dimension)
    logger.info(f"Loaded transform parameters from {path}")
    return transform
