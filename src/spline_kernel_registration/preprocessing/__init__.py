"""
Landmark Preprocessing Module

This module handles landmark input:
- Reading "index" / "point" landmark files
- Index to physical coordinate conversion with image grid geometry
- Composition of fixed landmarks with an initial transform
"""

from .grid_geometry import GridGeometry
from .landmark_loader import LandmarkLoader, LandmarkRole, LandmarkSet

__all__ = [
    "GridGeometry",
    "LandmarkLoader",
    "LandmarkRole",
    "LandmarkSet",
]
