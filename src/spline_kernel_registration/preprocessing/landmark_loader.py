"""
Landmark Point Set Loader

This module reads landmark point files and converts them to physical
coordinates.

File layout:
    index | point        coordinate kind (case-sensitive)
    <n>                  number of points
    x0 y0 [z0 ...]       n lines of D whitespace separated numbers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Any, List, Optional, Union

import numpy as np

from .grid_geometry import GridGeometry
from ..utils.exceptions import DimensionMismatchError, FileFormatError, MissingGeometryError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

INDEX_TOKEN = "index"
POINT_TOKEN = "point"


class LandmarkRole(Enum):
    FIXED = "fixed"
    MOVING = "moving"


@dataclass
class LandmarkSet:
    """Ordered landmark points of shape (n, D), in physical coordinates."""

    points: np.ndarray
    are_indices: bool = False

    def __post_init__(self) -> None:
        self.points = np.atleast_2d(np.asarray(self.points, dtype=np.float64))

    @property
    def dimension(self) -> int:
        return self.points.shape[1]

    def __len__(self) -> int:
        return len(self.points)


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Round to the nearest integer, halfway cases towards +infinity."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5).astype(np.int64)


def apply_initial_transform(points: np.ndarray, initial_transform: Any) -> np.ndarray:
    """
    Pass points through an initial transform.

    Args:
        points: (N, D) array
        initial_transform: Homogeneous (D+1) x (D+1) matrix, or an object
            with a ``transform_points`` method

    Returns:
        Transformed (N, D) array
    """
    if hasattr(initial_transform, "transform_points"):
        return np.asarray(initial_transform.transform_points(points), dtype=np.float64)

    matrix = np.asarray(initial_transform, dtype=np.float64)
    dim = points.shape[1]
    if matrix.shape != (dim + 1, dim + 1):
        raise DimensionMismatchError(
            f"Initial transform must be a {dim + 1}x{dim + 1} matrix, got {matrix.shape}",
            value=matrix.shape,
        )
    homog = np.column_stack([points, np.ones(len(points))])
    return (homog @ matrix.T)[:, :dim]


class LandmarkLoader:
    """
    A class for loading landmark point files.

    Features:
    - "index" and "point" coordinate kinds
    - Index to physical conversion with externally supplied grid geometry
    - Optional composition of fixed landmarks with an initial transform
    """

    def __init__(self, dimension: Optional[int] = None, log: Optional[logging.Logger] = None):
        """
        Initialize the loader.

        Args:
            dimension: Expected point dimension; inferred from the file when None
            log: Logger receiving progress messages (module logger if None)
        """
        self.dimension = dimension
        self.logger = log or logger

    def load(
        self,
        source: Union[str, Path, IO[str]],
        role: LandmarkRole = LandmarkRole.FIXED,
        geometry: Optional[GridGeometry] = None,
        initial_transform: Any = None,
        use_composition: bool = False,
    ) -> LandmarkSet:
        """
        Load a landmark file and return its points in physical coordinates.

        Args:
            source: Path of the point file, or an open text stream
            role: FIXED (source) or MOVING (target) landmarks
            geometry: Grid geometry used when the file holds indices
            initial_transform: Applied to FIXED landmarks when use_composition is set
            use_composition: Whether fixed landmarks are composed with initial_transform

        Returns:
            LandmarkSet

        Raises:
            FileNotFoundError: If the file does not exist
            FileFormatError: If the file is malformed
            MissingGeometryError: If indices are given without geometry
        """
        if isinstance(source, (str, Path)):
            file_path = Path(source)
            if not file_path.exists():
                raise FileNotFoundError(f"Landmark file not found: {file_path}")
            name = str(file_path)
            try:
                with file_path.open("r", encoding="utf-8") as f:
                    text = f.read()
            except UnicodeDecodeError as e:
                raise FileFormatError(f"{name}: not valid UTF-8 text", value=name) from e
        else:
            name = getattr(source, "name", "<stream>")
            try:
                text = source.read()
            except UnicodeDecodeError as e:
                raise FileFormatError(f"{name}: not valid UTF-8 text", value=name) from e

        are_indices, points = self.parse(text, name=name)

        if are_indices:
            self.logger.info("  Landmarks are specified as image indices.")
        else:
            self.logger.info("  Landmarks are specified in world coordinates.")
        self.logger.info("  Number of specified input points: %d", len(points))

        if are_indices:
            if geometry is None:
                raise MissingGeometryError(
                    f"Landmarks in {name} are image indices, but no grid geometry was given",
                    value=name,
                )
            if geometry.dimension != points.shape[1]:
                raise DimensionMismatchError(
                    f"Grid geometry is {geometry.dimension}D but landmarks are {points.shape[1]}D",
                    value=geometry.dimension,
                )
            points = geometry.index_to_physical(round_half_up(points))

        if role is LandmarkRole.FIXED and use_composition and initial_transform is not None:
            self.logger.debug("  Applying initial transform to fixed landmarks.")
            points = apply_initial_transform(points, initial_transform)

        return LandmarkSet(points=points, are_indices=are_indices)

    def parse(self, text: str, name: str = "<text>") -> "tuple[bool, np.ndarray]":
        """
        Parse point file content.

        Returns:
            Tuple of (are_indices, (n, D) array of the raw file values)
        """
        lines = [line.strip() for line in text.splitlines()]
        while lines and not lines[-1]:
            lines.pop()

        if len(lines) < 2:
            raise FileFormatError(f"{name}: expected a coordinate kind line and a point count line")

        kind = lines[0]
        if kind not in (INDEX_TOKEN, POINT_TOKEN):
            raise FileFormatError(
                f"{name}: first line must be '{INDEX_TOKEN}' or '{POINT_TOKEN}'", value=kind
            )

        try:
            count = int(lines[1])
        except ValueError:
            raise FileFormatError(f"{name}: invalid number of points", value=lines[1]) from None
        if count < 1:
            raise FileFormatError(f"{name}: number of points must be positive", value=count)

        rows = lines[2:]
        if len(rows) < count:
            raise FileFormatError(
                f"{name}: expected {count} points, found {len(rows)} lines", value=len(rows)
            )
        if len(rows) > count:
            raise FileFormatError(
                f"{name}: unexpected content after {count} points", value=rows[count]
            )

        dimension = self.dimension
        values: List[List[float]] = []
        for i, row in enumerate(rows):
            tokens = row.split()
            if dimension is None:
                dimension = len(tokens)
            if len(tokens) != dimension or dimension == 0:
                raise FileFormatError(
                    f"{name}: point {i} has {len(tokens)} coordinates, expected {dimension}",
                    value=row,
                )
            try:
                coordinates = [float(t) for t in tokens]
            except ValueError:
                raise FileFormatError(f"{name}: point {i} is not numeric", value=row) from None
            if not np.all(np.isfinite(coordinates)):
                raise FileFormatError(f"{name}: point {i} has a non-finite coordinate", value=row)
            values.append(coordinates)

        return kind == INDEX_TOKEN, np.asarray(values, dtype=np.float64)
