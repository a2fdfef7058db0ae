"""
Spline Kernel Transform

This module implements the landmark-driven spline kernel transform:

    T(x) = x + sum_i G(x - p_i) w_i + A x + b

where p_i are the source (fixed image) landmarks, G is the kernel of the
selected family, w_i the kernel weights and (A, b) the affine part.

Setting the source landmarks assembles the system matrix

    L = | K + s I   P |
        | P^T       0 |

with K the (nD x nD) block matrix of G(p_i - p_j), s the stiffness, and P
the (nD x (D+1)D) block matrix [p_i[0] I, ..., p_i[D-1] I, I], and
inverts it. Setting the target landmarks then only needs a matrix-vector
product: W = L^-1 [y_i - p_i; 0].
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union
import time

import numpy as np
from scipy.linalg import solve_triangular

from .kernels import KernelFamily, select_kernel
from ..preprocessing.landmark_loader import LandmarkSet
from ..utils.exceptions import ConfigurationError, DimensionMismatchError, NumericalError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

LandmarksLike = Union[LandmarkSet, np.ndarray]

# Relative size of the smallest |R_ii| below which QR treats L as singular
QR_RANK_TOLERANCE = 1e-12


class InversionMethod(Enum):
    SVD = "SVD"
    QR = "QR"

    @classmethod
    def parse(cls, value: Union[str, "InversionMethod"]) -> "InversionMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                "Unsupported matrix inversion method, expected one of SVD, QR", value=value
            ) from None


@dataclass
class KernelTransformState:
    """The persistable configuration of a kernel transform.

    ``fixed_parameters`` are the flattened source landmarks; ``parameters``
    are the flattened (n + D + 1) x D weight matrix, or None when the
    transform has not been fitted.
    """

    kernel_type: str
    kernel_family: KernelFamily
    dimension: int
    stiffness: float = 0.0
    poisson_ratio: float = 0.3
    inversion_method: InversionMethod = InversionMethod.SVD
    fixed_parameters: Optional[np.ndarray] = None
    parameters: Optional[np.ndarray] = None

    @property
    def source_landmarks(self) -> Optional[np.ndarray]:
        if self.fixed_parameters is None:
            return None
        return np.asarray(self.fixed_parameters, dtype=np.float64).reshape(-1, self.dimension)


def _as_points(landmarks: LandmarksLike) -> np.ndarray:
    if isinstance(landmarks, LandmarkSet):
        return landmarks.points
    return np.atleast_2d(np.asarray(landmarks, dtype=np.float64))


class KernelTransform:
    """
    Spline kernel transform fitted from corresponding landmarks.

    Typical use::

        kt = KernelTransform(dimension=3)
        kt.configure("ThinPlateSpline", stiffness=0.0)
        kt.set_source_landmarks(fixed)   # assembly + inversion, O(n^3)
        kt.set_target_landmarks(moving)  # weights
        warped = kt.transform_points(points)
    """

    def __init__(
        self,
        dimension: int,
        stiffness: float = 0.0,
        poisson_ratio: float = 0.3,
        inversion_method: Union[str, InversionMethod] = InversionMethod.SVD,
        *,
        chunk_size: int = 4096,
    ):
        """
        Initialize an unfitted transform of unknown kernel type.

        Args:
            dimension: Spatial dimension D of the landmarks.
            stiffness: Relaxation factor in [0, 1]; 0 interpolates exactly.
            poisson_ratio: Poisson ratio of the elastic body splines.
            inversion_method: "SVD" or "QR".
            chunk_size: Number of query points evaluated at once.
        """
        if dimension < 1:
            raise ConfigurationError("Dimension must be positive", value=dimension)
        self.dimension = int(dimension)
        self.chunk_size = chunk_size

        self._source: Optional[np.ndarray] = None
        self._l_inverse: Optional[np.ndarray] = None
        self._weights: Optional[np.ndarray] = None
        # Wall-clock seconds of the last fitting steps
        self.timings: Dict[str, float] = {}

        self.kernel_type = "unknown"
        self.kernel_family = KernelFamily.UNKNOWN
        self.poisson_ratio = float(poisson_ratio)
        self.inversion_method = InversionMethod.parse(inversion_method)
        self.stiffness = 0.0
        self.set_stiffness(stiffness)

    # ------------------------ Configuration ------------------------

    def set_kernel_type(self, kernel_type: str) -> bool:
        """Select the kernel family; returns False for unsupported names."""
        family, ok = select_kernel(kernel_type, self.dimension)
        self.kernel_type = kernel_type
        self.kernel_family = family
        self._reset_fit()
        return ok

    def set_stiffness(self, stiffness: float) -> None:
        stiffness = float(stiffness)
        if not 0.0 <= stiffness <= 1.0:
            raise ConfigurationError("Stiffness (relaxation factor) must lie in [0, 1]", value=stiffness)
        self.stiffness = stiffness
        self._reset_fit()

    def set_poisson_ratio(self, poisson_ratio: float) -> None:
        self.poisson_ratio = float(poisson_ratio)
        if self.kernel_family.uses_poisson_ratio:
            self._reset_fit()

    def set_inversion_method(self, method: Union[str, InversionMethod]) -> None:
        self.inversion_method = InversionMethod.parse(method)
        self._reset_fit()

    def configure(
        self,
        kernel_type: str,
        stiffness: float = 0.0,
        poisson_ratio: float = 0.3,
        inversion_method: Union[str, InversionMethod] = InversionMethod.SVD,
    ) -> None:
        """
        Store all scalar settings at once.

        Raises:
            ConfigurationError: For unknown kernel types or a stiffness outside [0, 1].
        """
        if not self.set_kernel_type(kernel_type):
            raise ConfigurationError(
                f"The kernel type is not supported for dimension {self.dimension}", value=kernel_type
            )
        self.set_stiffness(stiffness)
        self.set_poisson_ratio(poisson_ratio)
        self.set_inversion_method(inversion_method)

    def _reset_fit(self) -> None:
        # Source landmarks are kept; the system is re-assembled on the next fit
        self._l_inverse = None
        self._weights = None

    # ------------------------ Landmarks ------------------------

    @property
    def number_of_landmarks(self) -> int:
        return 0 if self._source is None else len(self._source)

    @property
    def is_fitted(self) -> bool:
        return self._weights is not None

    def set_source_landmarks(self, landmarks: LandmarksLike) -> None:
        """
        Set the source landmarks and invert the kernel system.

        This is the expensive step: O(n^3) time and O(n^2) memory.

        Raises:
            ConfigurationError: If the kernel type is unknown.
            DimensionMismatchError: On wrong dimension or empty landmarks.
            NumericalError: On non-finite landmarks, or if the system cannot be inverted.
        """
        points = _as_points(landmarks)
        self._check_points(points, "source landmarks")
        self._require_kernel()

        self._source = points.copy()
        self._weights = None
        self._l_inverse = None
        self._assemble_and_invert()

    def set_target_landmarks(self, landmarks: LandmarksLike) -> None:
        """
        Fit the weights mapping the source landmarks onto ``landmarks``.

        Raises:
            ConfigurationError: If no source landmarks were set.
            DimensionMismatchError: If the landmark counts or dimensions differ.
            NumericalError: If the target landmarks are not finite.
        """
        self._require_source()
        target = _as_points(landmarks)
        self._check_points(target, "target landmarks")
        if len(target) != len(self._source):
            raise DimensionMismatchError(
                f"Number of target landmarks ({len(target)}) differs from "
                f"number of source landmarks ({len(self._source)})",
                value=len(target),
            )
        self._require_kernel()
        if self._l_inverse is None:
            self._assemble_and_invert()

        start = time.time()
        n, dim = self._source.shape
        rhs = np.zeros((n + dim + 1) * dim)
        rhs[: n * dim] = (target - self._source).ravel()
        self._weights = (self._l_inverse @ rhs).reshape(n + dim + 1, dim)
        self.timings["target"] = time.time() - start
        logger.debug("Kernel weights computed in %.4f s.", self.timings["target"])

    def set_identity(self) -> None:
        """Set all weights to zero, so that the transform maps every point to itself."""
        self._require_source()
        self._require_kernel()
        n, dim = self._source.shape
        self._weights = np.zeros((n + dim + 1, dim))

    def get_source_landmarks(self) -> Optional[np.ndarray]:
        return None if self._source is None else self._source.copy()

    def get_target_landmarks(self) -> np.ndarray:
        """Images of the source landmarks under the current transform."""
        self._require_source()
        return self.transform_points(self._source)

    # ------------------------ Parameters ------------------------

    @property
    def weights(self) -> Optional[np.ndarray]:
        return None if self._weights is None else self._weights.copy()

    @property
    def number_of_parameters(self) -> int:
        return (self.number_of_landmarks + self.dimension + 1) * self.dimension

    def get_fixed_parameters(self) -> np.ndarray:
        """Flattened source landmark coordinates."""
        if self._source is None:
            return np.zeros(0)
        return self._source.ravel().copy()

    def set_fixed_parameters(self, fixed_parameters) -> None:
        vector = np.asarray(fixed_parameters, dtype=np.float64).ravel()
        if vector.size == 0 or vector.size % self.dimension != 0:
            raise DimensionMismatchError(
                f"Number of fixed parameters is not a positive multiple of the dimension {self.dimension}",
                value=vector.size,
            )
        self.set_source_landmarks(vector.reshape(-1, self.dimension))

    def get_parameters(self) -> np.ndarray:
        """Flattened (n + D + 1) x D weight matrix."""
        self._require_fitted()
        return self._weights.ravel().copy()

    def set_parameters(self, parameters) -> None:
        self._require_source()
        vector = np.asarray(parameters, dtype=np.float64).ravel()
        if vector.size != self.number_of_parameters:
            raise DimensionMismatchError(
                f"Expected {self.number_of_parameters} transform parameters, got {vector.size}",
                value=vector.size,
            )
        self._weights = vector.reshape(-1, self.dimension).copy()

    def get_state(self) -> KernelTransformState:
        return KernelTransformState(
            kernel_type=self.kernel_type,
            kernel_family=self.kernel_family,
            dimension=self.dimension,
            stiffness=self.stiffness,
            poisson_ratio=self.poisson_ratio,
            inversion_method=self.inversion_method,
            fixed_parameters=self.get_fixed_parameters() if self._source is not None else None,
            parameters=self.get_parameters() if self.is_fitted else None,
        )

    @classmethod
    def from_state(cls, state: KernelTransformState, **kwargs) -> "KernelTransform":
        """
        Rebuild a transform from a state.

        The source landmarks are set (and the system inverted); weights are
        only restored when the state carries them.
        """
        transform = cls(
            state.dimension,
            stiffness=state.stiffness,
            poisson_ratio=state.poisson_ratio,
            inversion_method=state.inversion_method,
            **kwargs,
        )
        if not transform.set_kernel_type(state.kernel_type):
            raise ConfigurationError(
                f"The kernel type is not supported for dimension {state.dimension}", value=state.kernel_type
            )
        if state.fixed_parameters is not None:
            transform.set_fixed_parameters(state.fixed_parameters)
            if state.parameters is not None:
                transform.set_parameters(state.parameters)
        return transform

    # ------------------------ Evaluation ------------------------

    def transform_point(self, point) -> np.ndarray:
        point = np.asarray(point, dtype=np.float64)
        return self.transform_points(point[None, :])[0]

    def transform_points(self, points) -> np.ndarray:
        """
        Apply the transform to a set of points.

        Args:
            points: Array of shape (M, D).

        Returns:
            Array of shape (M, D).
        """
        self._require_fitted()
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.shape[1] != self.dimension:
            raise DimensionMismatchError(
                f"Expected points of dimension {self.dimension}, got shape {points.shape}",
                value=points.shape,
            )
        if len(points) == 0:
            return points.copy()

        n, dim = self._source.shape
        kernel_weights = self._weights[:n]
        affine = self._weights[n: n + dim]
        translation = self._weights[n + dim]

        out = np.empty_like(points)
        for start in range(0, len(points), self.chunk_size):
            chunk = points[start: start + self.chunk_size]
            diffs = chunk[:, None, :] - self._source[None, :, :]
            g = self.kernel_family.evaluate(diffs, self.poisson_ratio)
            displacement = np.einsum("mnij,nj->mi", g, kernel_weights)
            out[start: start + len(chunk)] = chunk + displacement + chunk @ affine + translation
        return out

    def __call__(self, points) -> np.ndarray:
        return self.transform_points(points)

    # ------------------------ Internals ------------------------

    def _check_points(self, points: np.ndarray, what: str) -> None:
        if points.ndim != 2 or points.shape[1] != self.dimension:
            raise DimensionMismatchError(
                f"Expected {what} of shape (n, {self.dimension}), got {points.shape}",
                value=points.shape,
            )
        if len(points) == 0:
            raise DimensionMismatchError(f"At least one point is required for the {what}", value=0)
        if not np.all(np.isfinite(points)):
            raise NumericalError(f"The {what} contain non-finite coordinates")

    def _require_kernel(self) -> None:
        if self.kernel_family is KernelFamily.UNKNOWN:
            raise ConfigurationError("Kernel type is not set or not supported", value=self.kernel_type)

    def _require_source(self) -> None:
        if self._source is None:
            raise ConfigurationError("Source landmarks have not been set")

    def _require_fitted(self) -> None:
        self._require_source()
        if self._weights is None:
            raise ConfigurationError("Transform has not been fitted; set target landmarks or identity first")

    def system_matrix(self) -> np.ndarray:
        """Assemble L for the current source landmarks."""
        self._require_source()
        points = self._source
        n, dim = points.shape

        diffs = points[:, None, :] - points[None, :, :]
        g = self.kernel_family.evaluate(diffs, self.poisson_ratio)
        k = g.transpose(0, 2, 1, 3).reshape(n * dim, n * dim)
        k[np.diag_indices_from(k)] += self.stiffness

        p = np.kron(np.column_stack([points, np.ones(n)]), np.eye(dim))

        size = (n + dim + 1) * dim
        system = np.zeros((size, size))
        system[: n * dim, : n * dim] = k
        system[: n * dim, n * dim:] = p
        system[n * dim:, : n * dim] = p.T
        return system

    def _assemble_and_invert(self) -> None:
        start = time.time()
        system = self.system_matrix()
        if self.inversion_method is InversionMethod.QR:
            self._l_inverse = _invert_qr(system)
        else:
            self._l_inverse = _invert_svd(system)
        self.timings["source"] = time.time() - start
        logger.debug(
            "Kernel system of size %d inverted with %s in %.4f s.",
            system.shape[0],
            self.inversion_method.value,
            self.timings["source"],
        )


def _invert_svd(system: np.ndarray) -> np.ndarray:
    try:
        u, s, vt = np.linalg.svd(system)
    except np.linalg.LinAlgError as e:
        raise NumericalError(f"SVD of the kernel system failed: {e}") from e
    cutoff = max(system.shape) * np.finfo(np.float64).eps * (s[0] if s.size else 0.0)
    s_inv = np.zeros_like(s)
    keep = s > cutoff
    s_inv[keep] = 1.0 / s[keep]
    n_dropped = int(np.sum(~keep))
    if n_dropped:
        logger.warning(
            "Kernel system is rank deficient (%d of %d singular values dropped); "
            "using the pseudo-inverse.",
            n_dropped,
            s.size,
        )
    return (vt.T * s_inv) @ u.T


def _invert_qr(system: np.ndarray) -> np.ndarray:
    try:
        q, r = np.linalg.qr(system)
    except np.linalg.LinAlgError as e:
        raise NumericalError(f"QR decomposition of the kernel system failed: {e}") from e
    diag = np.abs(np.diag(r))
    if diag.size == 0 or diag.min() <= QR_RANK_TOLERANCE * diag.max():
        raise NumericalError(
            "Kernel system is singular; QR inversion requires full rank, use SVD instead",
            value=float(diag.min() / diag.max()) if diag.size and diag.max() > 0 else 0.0,
        )
    return solve_triangular(r, q.T)
