"""
Registration Module

The spline kernel transform component used by a registration run, and
warping of point files with a fitted transform.
"""

from .spline_kernel_component import SplineKernelTransformComponent
from .point_warping import transform_point_file

__all__ = [
    "SplineKernelTransformComponent",
    "transform_point_file",
]
