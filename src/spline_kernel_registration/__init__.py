"""
Spline Kernel Registration Package

Landmark-driven spline kernel transforms for image registration.
Given corresponding landmarks in a fixed (source) and a moving (target)
image, a kernel transform is fitted that maps the landmarks onto each
other (exactly, or approximately with a relaxation factor) and smoothly
interpolates in between. Thin plate, volume and elastic body spline
kernels are supported, with SVD or QR inversion of the kernel system.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .transform import *
from .registration import *
from .utils import *

__all__ = [
    "preprocessing",
    "transform",
    "registration",
    "utils",
]
