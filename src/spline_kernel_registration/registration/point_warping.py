"""
Point set warping

Applies a fitted transform to a point file (same format as the landmark
files) and writes one line per point with the input and output positions.
"""

from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..preprocessing.grid_geometry import GridGeometry
from ..preprocessing.landmark_loader import LandmarkLoader, LandmarkRole, round_half_up
from ..transform.kernel_transform import KernelTransform
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

OUTPUT_POINTS_NAME = "outputpoints.txt"


def _bracket(values: np.ndarray, integer: bool = False) -> str:
    if integer:
        body = " ".join(str(int(v)) for v in values)
    else:
        body = " ".join(f"{float(v):.6f}" for v in values)
    return f"[ {body} ]"


def format_output_points(
    input_points: np.ndarray,
    output_points: np.ndarray,
    geometry: Optional[GridGeometry] = None,
) -> List[str]:
    """
    Render one line per point:
    ``Point <i> ; InputIndex = [..] ; InputPoint = [..] ; OutputIndexFixed = [..] ;
    OutputPoint = [..] ; Deformation = [..]`` (tab separated; index fields
    only when a geometry is known).
    """
    input_indices = output_indices = None
    if geometry is not None:
        input_indices = round_half_up(geometry.physical_to_index(input_points))
        output_indices = round_half_up(geometry.physical_to_index(output_points))

    lines = []
    for i, (p_in, p_out) in enumerate(zip(input_points, output_points)):
        fields = [f"Point\t{i}"]
        if input_indices is not None:
            fields.append(f"InputIndex = {_bracket(input_indices[i], integer=True)}")
        fields.append(f"InputPoint = {_bracket(p_in)}")
        if output_indices is not None:
            fields.append(f"OutputIndexFixed = {_bracket(output_indices[i], integer=True)}")
        fields.append(f"OutputPoint = {_bracket(p_out)}")
        fields.append(f"Deformation = {_bracket(p_out - p_in)}")
        lines.append("\t; ".join(fields))
    return lines


def transform_point_file(
    transform: KernelTransform,
    input_file: Union[str, Path],
    output_file: Union[str, Path],
    geometry: Optional[GridGeometry] = None,
) -> np.ndarray:
    """Transform the points of ``input_file`` and write them to ``output_file``.

    Index input points are converted with ``geometry`` first.

    Returns:
        (N, D) array of transformed points
    """
    loader = LandmarkLoader(dimension=transform.dimension)
    points = loader.load(input_file, role=LandmarkRole.MOVING, geometry=geometry).points

    output = transform.transform_points(points)

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    lines = format_output_points(points, output, geometry)
    output_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

    logger.info(f"Transformed {len(points)} points from {input_file} -> {output_file}")
    return output
