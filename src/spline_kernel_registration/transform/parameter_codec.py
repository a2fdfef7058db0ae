"""
Transform Parameter Codec

Reads and writes the spline kernel section of a transform parameter file.
Every directive is one line of the form ``(Key value ...)``; strings are
double quoted, ``//`` starts a comment.

Only the defining parameters are handled here (kernel type, relaxation
factor, Poisson ratio, inversion method and the fixed image landmarks).
The weights are stored by the generic parameter file layer.
"""

from __future__ import annotations

import re
import shlex
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from .kernel_transform import InversionMethod, KernelTransformState
from .kernels import select_kernel
from ..utils.exceptions import ConfigurationError, DimensionMismatchError

SECTION_COMMENT = "// SplineKernelTransform specific"

_DIRECTIVE = re.compile(r"^\(\s*(\w+)\s*(.*?)\s*\)$")

Value = Union[str, int, float]


# ------------------------ Record syntax ------------------------

def parse_parameter_text(text: str) -> Dict[str, List[str]]:
    """
    Parse a parameter record into key -> list of raw string values.

    Quotes are removed from string values. Later directives override earlier
    ones with the same key.

    Raises:
        ConfigurationError: On a line that is not a ``(Key value ...)`` directive.
    """
    record: Dict[str, List[str]] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("//", 1)[0].strip()
        if not line:
            continue
        match = _DIRECTIVE.match(line)
        if match is None:
            raise ConfigurationError(f"Malformed parameter directive on line {lineno}", value=raw.strip())
        key, body = match.groups()
        try:
            record[key] = shlex.split(body) if body else []
        except ValueError:
            raise ConfigurationError(f"Unbalanced quotes on line {lineno}", value=raw.strip()) from None
    return record


def format_value(value: Value) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    return repr(float(value))


def format_directive(key: str, values: Union[Value, Sequence[Value]]) -> str:
    if isinstance(values, (str, int, float, np.floating, np.integer)):
        values = [values]
    return f"({key} {' '.join(format_value(v) for v in values)})"


# ------------------------ Typed access ------------------------

def _single(record: Dict[str, List[str]], key: str) -> Optional[str]:
    values = record.get(key)
    if not values:
        return None
    return values[0]


def _float(record: Dict[str, List[str]], key: str, default: float) -> float:
    raw = _single(record, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} is not a number", value=raw) from None


def _count(record: Dict[str, List[str]], key: str) -> Optional[int]:
    raw = _single(record, key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} is not an integer", value=raw) from None
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative", value=value)
    return value


def _vector(record: Dict[str, List[str]], key: str) -> Optional[np.ndarray]:
    values = record.get(key)
    if values is None:
        return None
    try:
        return np.asarray([float(v) for v in values], dtype=np.float64)
    except ValueError:
        raise ConfigurationError(f"{key} contains a non-numeric value", value=" ".join(values)) from None


# ------------------------ Codec ------------------------

def encode(state: KernelTransformState) -> str:
    """
    Write the spline kernel section for ``state``.

    Lines, in order: section comment, SplineKernelType, SplinePoissonRatio,
    SplineRelaxationFactor, TPSMatrixInversionMethod, NumberOfParameters,
    FixedImageLandmarks.
    """
    fixed = np.zeros(0) if state.fixed_parameters is None else np.asarray(state.fixed_parameters).ravel()
    lines = [
        SECTION_COMMENT,
        format_directive("SplineKernelType", state.kernel_type),
        format_directive("SplinePoissonRatio", state.poisson_ratio),
        format_directive("SplineRelaxationFactor", state.stiffness),
        format_directive("TPSMatrixInversionMethod", state.inversion_method.value),
        format_directive("NumberOfParameters", int(fixed.size)),
    ]
    if fixed.size:
        lines.append(format_directive("FixedImageLandmarks", [float(v) for v in fixed]))
    else:
        lines.append("(FixedImageLandmarks)")
    return "\n".join(lines) + "\n"


def decode(
    text: Union[str, Dict[str, List[str]]],
    dimension: Optional[int] = None,
) -> KernelTransformState:
    """
    Read the spline kernel section of a parameter record.

    Weights are not fitted; ``parameters`` of the result is None.

    Args:
        text: Record text, or an already parsed record
        dimension: Landmark dimension; read from FixedImageDimension when None

    Returns:
        KernelTransformState

    Raises:
        ConfigurationError: Missing or invalid kernel type, dimension,
            NumberOfParameters or FixedImageLandmarks.
        DimensionMismatchError: Landmark vector length differs from
            NumberOfParameters or is not a multiple of the dimension.
    """
    record = parse_parameter_text(text) if isinstance(text, str) else text

    kernel_type = _single(record, "SplineKernelType")
    if kernel_type is None:
        raise ConfigurationError("the SplineKernelType is not given in the transform parameter file")

    number_of_parameters = _count(record, "NumberOfParameters")
    if number_of_parameters is None:
        raise ConfigurationError("the NumberOfParameters is not given in the transform parameter file")

    landmarks = _vector(record, "FixedImageLandmarks")
    if landmarks is None:
        raise ConfigurationError("the FixedImageLandmarks are not given in the transform parameter file")
    if landmarks.size != number_of_parameters:
        raise DimensionMismatchError(
            f"FixedImageLandmarks has {landmarks.size} values but NumberOfParameters is {number_of_parameters}",
            value=landmarks.size,
        )

    if dimension is None:
        dimension = _count(record, "FixedImageDimension")
        if dimension is None:
            raise ConfigurationError("the landmark dimension is neither given nor in FixedImageDimension")

    family, ok = select_kernel(kernel_type, dimension)
    if not ok:
        raise ConfigurationError(
            f"The kernel type is not supported for dimension {dimension}", value=kernel_type
        )

    stiffness = _float(record, "SplineRelaxationFactor", 0.0)
    poisson_ratio = _float(record, "SplinePoissonRatio", 0.3)
    method = InversionMethod.parse(_single(record, "TPSMatrixInversionMethod") or InversionMethod.SVD.value)

    if landmarks.size % dimension != 0:
        raise DimensionMismatchError(
            f"FixedImageLandmarks length is not a multiple of the dimension {dimension}",
            value=landmarks.size,
        )

    return KernelTransformState(
        kernel_type=kernel_type,
        kernel_family=family,
        dimension=dimension,
        stiffness=stiffness,
        poisson_ratio=poisson_ratio,
        inversion_method=method,
        fixed_parameters=landmarks if landmarks.size else None,
        parameters=None,
    )
