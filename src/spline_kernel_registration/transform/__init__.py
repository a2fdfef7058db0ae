"""
Kernel Transform Module

This module provides the spline kernel families, the kernel transform
fitted from landmarks, and reading/writing of its parameters.
"""

from .kernels import KernelFamily, select_kernel
from .kernel_transform import InversionMethod, KernelTransform, KernelTransformState
from .parameter_codec import decode, encode, parse_parameter_text
from .parameter_file import read_transform_parameter_file, write_transform_parameter_file

__all__ = [
    "KernelFamily",
    "select_kernel",
    "InversionMethod",
    "KernelTransform",
    "KernelTransformState",
    "decode",
    "encode",
    "parse_parameter_text",
    "read_transform_parameter_file",
    "write_transform_parameter_file",
]
