"""
Image Grid Geometry

Index <-> physical coordinate conversion for a regular image grid, as
supplied by the image I/O layer (origin, spacing and direction cosines).

The conversion is defined as:
    physical = origin + direction @ (spacing * index)
    index    = (direction^-1 @ (physical - origin)) / spacing
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass
class GridGeometry:
    """Geometry of a D-dimensional image grid.

    Attributes:
        origin: Physical position of index (0, ..., 0)
        spacing: Physical size of a grid cell along each axis (positive)
        direction: D x D direction cosine matrix (identity by default)

    Example:
        >>> geometry = GridGeometry(origin=[10.0, 20.0], spacing=[0.5, 2.0])
        >>> geometry.index_to_physical(np.array([[2, 3]]))  # -> [[11.0, 26.0]]
    """

    origin: "NDArray[np.floating]"
    spacing: "NDArray[np.floating]"
    direction: Optional["NDArray[np.floating]"] = field(default=None)

    def __post_init__(self) -> None:
        self.origin = np.asarray(self.origin, dtype=np.float64).ravel()
        self.spacing = np.asarray(self.spacing, dtype=np.float64).ravel()
        dim = self.origin.size
        if self.direction is None:
            self.direction = np.eye(dim)
        else:
            self.direction = np.asarray(self.direction, dtype=np.float64)

        if self.spacing.size != dim:
            raise ValueError(f"Spacing has {self.spacing.size} components, expected {dim}")
        if self.direction.shape != (dim, dim):
            raise ValueError(f"Expected {dim}x{dim} direction matrix, got shape {self.direction.shape}")
        if np.any(self.spacing <= 0):
            raise ValueError(f"Spacing must be positive, got {self.spacing.tolist()}")

    @property
    def dimension(self) -> int:
        return self.origin.size

    @classmethod
    def identity(cls, dimension: int) -> "GridGeometry":
        """Unit spacing, zero origin and identity direction."""
        return cls(origin=np.zeros(dimension), spacing=np.ones(dimension))

    @classmethod
    def from_affine(cls, affine: "NDArray[np.floating]") -> "GridGeometry":
        """Create geometry from a (D+1) x (D+1) voxel-to-world matrix.

        The columns of the linear part are split into direction (unit
        columns) and spacing (column norms).

        Args:
            affine: Homogeneous index-to-physical matrix

        Returns:
            GridGeometry instance
        """
        affine = np.asarray(affine, dtype=np.float64)
        if affine.ndim != 2 or affine.shape[0] != affine.shape[1] or affine.shape[0] < 2:
            raise ValueError(f"Expected square homogeneous matrix, got shape {affine.shape}")
        dim = affine.shape[0] - 1
        linear = affine[:dim, :dim]
        spacing = np.linalg.norm(linear, axis=0)
        if np.any(spacing == 0):
            raise ValueError("Affine matrix has a zero column; cannot derive spacing")
        return cls(origin=affine[:dim, dim], spacing=spacing, direction=linear / spacing)

    def to_affine(self) -> "NDArray[np.floating]":
        dim = self.dimension
        affine = np.eye(dim + 1)
        affine[:dim, :dim] = self.direction * self.spacing
        affine[:dim, dim] = self.origin
        return affine

    def index_to_physical(self, indices: "NDArray[np.floating]") -> "NDArray[np.floating]":
        """Convert (N, D) grid indices to physical points."""
        indices = np.atleast_2d(np.asarray(indices, dtype=np.float64))
        self._check(indices)
        return self.origin + (indices * self.spacing) @ self.direction.T

    def physical_to_index(self, points: "NDArray[np.floating]") -> "NDArray[np.floating]":
        """Convert (N, D) physical points to continuous grid indices."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        self._check(points)
        local = np.linalg.solve(self.direction, (points - self.origin).T).T
        return local / self.spacing

    def _check(self, arr: np.ndarray) -> None:
        if arr.ndim != 2 or arr.shape[1] != self.dimension:
            raise ValueError(f"Expected Nx{self.dimension} array, got shape {arr.shape}")

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON/YAML storage."""
        return {
            "origin": self.origin.tolist(),
            "spacing": self.spacing.tolist(),
            "direction": self.direction.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GridGeometry":
        return cls(
            origin=data["origin"],
            spacing=data["spacing"],
            direction=data.get("direction"),
        )

    def __str__(self) -> str:
        return (
            f"GridGeometry(origin={np.round(self.origin, 4).tolist()}, "
            f"spacing={np.round(self.spacing, 4).tolist()})"
        )


def geometry_from_sequences(
    origin: Sequence[float],
    spacing: Sequence[float],
    direction: Optional[Sequence[float]] = None,
) -> GridGeometry:
    """Build geometry from flat sequences, with a row-major flattened direction."""
    dim = len(origin)
    matrix = None
    if direction is not None:
        matrix = np.asarray(direction, dtype=np.float64).reshape(dim, dim)
    return GridGeometry(origin=origin, spacing=spacing, direction=matrix)
