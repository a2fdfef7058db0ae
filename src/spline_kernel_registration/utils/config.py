"""
Configuration management for spline-kernel-registration.

Provides a typed pydantic model and YAML loader with sensible defaults,
plus the mapping of legacy command-line argument names onto their
current names.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Literal, Any, Dict, Mapping

from pydantic import BaseModel, Field, ValidationError
import yaml

from .logging import setup_logger

logger = setup_logger(__name__)


# -----------------------
# Typed config structures
# -----------------------


class SplineKernelConfig(BaseModel):
    kernel_type: str = Field(
        default="ThinPlateSpline",
        description="ThinPlateSpline | VolumeSpline | ElasticBodySpline | ElasticBodyReciprocalSpline "
                    "(always ThinPlateR2LogRSpline in 2D)",
    )
    relaxation_factor: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Stiffness: 0 interpolates the landmarks exactly, >0 approximates them",
    )
    poisson_ratio: float = Field(default=0.3, description="Only used by the elastic body splines")
    matrix_inversion_method: Literal["SVD", "QR"] = Field(default="SVD")


class LandmarksConfig(BaseModel):
    fixed_points: Optional[str] = Field(default=None, description="Fixed image (source) landmark file (-fp)")
    moving_points: Optional[str] = Field(default=None, description="Moving image (target) landmark file (-mp)")
    use_composition: bool = Field(
        default=False,
        description="Pass fixed landmarks through the initial transform before fitting",
    )

    @classmethod
    def from_arguments(
        cls,
        arguments: Mapping[str, str],
        *,
        use_composition: bool = False,
        log: Optional[logging.Logger] = None,
    ) -> "LandmarksConfig":
        """Build from command-line style arguments such as ``{"-fp": ..., "-mp": ...}``."""
        resolved = resolve_argument_aliases(arguments, log=log)
        return cls(
            fixed_points=resolved.get("-fp") or None,
            moving_points=resolved.get("-mp") or None,
            use_composition=use_composition,
        )


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    spline: SplineKernelConfig = Field(default_factory=SplineKernelConfig)
    landmarks: LandmarksConfig = Field(default_factory=LandmarksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Legacy argument names
# -----------------------

# legacy name -> current name
LEGACY_ARGUMENT_ALIASES: Dict[str, str] = {
    "-ipp": "-fp",
}


def resolve_argument_aliases(
    arguments: Mapping[str, str],
    *,
    log: Optional[logging.Logger] = None,
) -> Dict[str, str]:
    """
    Map deprecated argument names onto their current names.

    A non-empty legacy argument replaces the current one, and a deprecation
    warning is logged for it.

    Args:
        arguments: Argument name -> value mapping
        log: Logger receiving the deprecation warning (module logger if None)

    Returns:
        New mapping that only uses current argument names
    """
    log = log or logger
    resolved = {k: v for k, v in arguments.items() if k not in LEGACY_ARGUMENT_ALIASES}
    for legacy, current in LEGACY_ARGUMENT_ALIASES.items():
        value = arguments.get(legacy)
        if value:
            log.warning("WARNING: %s is deprecated, use %s instead.", legacy, current)
            resolved[current] = value
    return resolved


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/spline_kernel_registration/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
