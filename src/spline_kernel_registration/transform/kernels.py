"""
Spline Kernel Families

The radial basis kernels a spline kernel transform can be built from, and
the selection of a kernel from its parameter-file name.

Each family maps a difference vector x (between a query point and a
landmark) to a D x D matrix G(x), with r = |x|:

- ThinPlateSpline:              G = r I
- ThinPlateR2LogRSpline:        G = r^2 log(r) I            (G(0) = 0)
- VolumeSpline:                 G = r^3 I
- ElasticBodySpline:            G = a r^3 I - 3 r x x^T,     a = 12 (1 - nu) - 1
- ElasticBodyReciprocalSpline:  G = a r I - x x^T / r,       a = 8 (1 - nu) - 1  (G(0) = 0)

nu is the Poisson ratio of the elastic body splines.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Tuple

import numpy as np

from ..utils.exceptions import ConfigurationError

# Below this radius the reciprocal kernel is taken to be zero
_RECIPROCAL_EPSILON = 1e-8


class KernelFamily(Enum):
    THIN_PLATE_SPLINE = "ThinPlateSpline"
    THIN_PLATE_R2LOGR_SPLINE = "ThinPlateR2LogRSpline"
    VOLUME_SPLINE = "VolumeSpline"
    ELASTIC_BODY_SPLINE = "ElasticBodySpline"
    ELASTIC_BODY_RECIPROCAL_SPLINE = "ElasticBodyReciprocalSpline"
    UNKNOWN = "unknown"

    @property
    def uses_poisson_ratio(self) -> bool:
        return self in (KernelFamily.ELASTIC_BODY_SPLINE, KernelFamily.ELASTIC_BODY_RECIPROCAL_SPLINE)

    def evaluate(self, diffs: np.ndarray, poisson_ratio: float = 0.3) -> np.ndarray:
        """
        Evaluate the kernel on an array of difference vectors.

        Args:
            diffs: Array of shape (..., D)
            poisson_ratio: Only used by the elastic body splines

        Returns:
            Array of shape (..., D, D)

        Raises:
            ConfigurationError: For the UNKNOWN family
        """
        if self is KernelFamily.UNKNOWN:
            raise ConfigurationError("Cannot evaluate a kernel of unknown type", value=self.value)
        diffs = np.asarray(diffs, dtype=np.float64)
        return _KERNELS[self](diffs, poisson_ratio)


# ------------------------ Kernel functions ------------------------

def _radial(diffs: np.ndarray, phi: np.ndarray) -> np.ndarray:
    dim = diffs.shape[-1]
    return phi[..., None, None] * np.eye(dim)


def _norm(diffs: np.ndarray) -> np.ndarray:
    return np.sqrt(np.einsum("...i,...i->...", diffs, diffs))


def _thin_plate(diffs: np.ndarray, poisson_ratio: float) -> np.ndarray:
    return _radial(diffs, _norm(diffs))


def _thin_plate_r2logr(diffs: np.ndarray, poisson_ratio: float) -> np.ndarray:
    r = _norm(diffs)
    phi = np.zeros_like(r)
    mask = r > 0
    rm = r[mask]
    phi[mask] = (rm ** 2) * np.log(rm)
    return _radial(diffs, phi)


def _volume(diffs: np.ndarray, poisson_ratio: float) -> np.ndarray:
    return _radial(diffs, _norm(diffs) ** 3)


def _elastic_body(diffs: np.ndarray, poisson_ratio: float) -> np.ndarray:
    alpha = 12.0 * (1.0 - poisson_ratio) - 1.0
    r = _norm(diffs)
    outer = diffs[..., :, None] * diffs[..., None, :]
    return _radial(diffs, alpha * r ** 3) - 3.0 * r[..., None, None] * outer


def _elastic_body_reciprocal(diffs: np.ndarray, poisson_ratio: float) -> np.ndarray:
    alpha = 8.0 * (1.0 - poisson_ratio) - 1.0
    r = _norm(diffs)
    factor = np.zeros_like(r)
    mask = r > _RECIPROCAL_EPSILON
    factor[mask] = -1.0 / r[mask]
    radial = np.where(mask, alpha * r, 0.0)
    outer = diffs[..., :, None] * diffs[..., None, :]
    return _radial(diffs, radial) + factor[..., None, None] * outer


_KERNELS: Dict[KernelFamily, Callable[[np.ndarray, float], np.ndarray]] = {
    KernelFamily.THIN_PLATE_SPLINE: _thin_plate,
    KernelFamily.THIN_PLATE_R2LOGR_SPLINE: _thin_plate_r2logr,
    KernelFamily.VOLUME_SPLINE: _volume,
    KernelFamily.ELASTIC_BODY_SPLINE: _elastic_body,
    KernelFamily.ELASTIC_BODY_RECIPROCAL_SPLINE: _elastic_body_reciprocal,
}

# Names selectable for 3D and higher. ThinPlateR2LogRSpline is only used in 2D.
_SELECTABLE: Dict[str, KernelFamily] = {
    KernelFamily.THIN_PLATE_SPLINE.value: KernelFamily.THIN_PLATE_SPLINE,
    KernelFamily.VOLUME_SPLINE.value: KernelFamily.VOLUME_SPLINE,
    KernelFamily.ELASTIC_BODY_SPLINE.value: KernelFamily.ELASTIC_BODY_SPLINE,
    KernelFamily.ELASTIC_BODY_RECIPROCAL_SPLINE.value: KernelFamily.ELASTIC_BODY_RECIPROCAL_SPLINE,
}


def select_kernel(requested: str, dimension: int) -> Tuple[KernelFamily, bool]:
    """
    Choose the kernel family for a requested kernel type name.

    In 2D only the r^2 log(r) thin plate spline is used, whatever was
    requested: the plain thin plate kernel r is not the biharmonic
    Green's function there.

    Args:
        requested: Kernel type name as found in the parameter file
        dimension: Spatial dimension of the landmarks

    Returns:
        Tuple of (kernel family, ok). ok is False for unsupported names,
        in which case the family is UNKNOWN.
    """
    if dimension == 2:
        return KernelFamily.THIN_PLATE_R2LOGR_SPLINE, True
    if dimension < 2:
        return KernelFamily.UNKNOWN, False

    family = _SELECTABLE.get(requested)
    if family is None:
        return KernelFamily.UNKNOWN, False
    return family, True
