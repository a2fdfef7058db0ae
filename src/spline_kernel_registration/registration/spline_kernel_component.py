"""
Spline kernel transform component

Connects a KernelTransform to the configuration of a registration run:
checks the landmark arguments, selects and parameterizes the kernel, loads
the fixed (source) and moving (target) landmarks and fits the transform,
and saves or restores it through a transform parameter file.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..preprocessing.grid_geometry import GridGeometry
from ..preprocessing.landmark_loader import LandmarkLoader, LandmarkRole, LandmarkSet
from ..transform.kernel_transform import KernelTransform
from ..transform.parameter_file import read_transform_parameter_file, write_transform_parameter_file
from ..utils.config import AppConfig
from ..utils.exceptions import ConfigurationError, FileFormatError, SplineKernelError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class SplineKernelTransformComponent:
    """
    The spline kernel transform as used by a registration run.

    The lifecycle follows the registration driver:
    1. ``before_all`` checks that the fixed landmark file is configured
    2. ``before_registration`` builds and fits the KernelTransform
    3. ``write_to_file`` / ``read_from_file`` persist it
    """

    def __init__(
        self,
        config: AppConfig,
        dimension: int,
        *,
        fixed_geometry: Optional[GridGeometry] = None,
        moving_geometry: Optional[GridGeometry] = None,
        initial_transform: Any = None,
        component_label: str = "Transform0",
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            config: Application configuration (spline and landmarks sections are used)
            dimension: Spatial dimension of the images
            fixed_geometry: Fixed image grid, needed for fixed landmarks given as indices
            moving_geometry: Moving image grid, needed for moving landmarks given as indices
            initial_transform: Transform composed with the fixed landmarks when
                config.landmarks.use_composition is set
            component_label: Label used in diagnostics
            log: Logger receiving progress messages (module logger if None)
        """
        self.config = config
        self.dimension = dimension
        self.fixed_geometry = fixed_geometry
        self.moving_geometry = moving_geometry
        self.initial_transform = initial_transform
        self.component_label = component_label
        self.logger = log or logger

        self.kernel_transform: Optional[KernelTransform] = None
        self.initial_parameters: Optional[np.ndarray] = None

    # ------------------------ Lifecycle ------------------------

    def before_all(self) -> int:
        """Check the landmark arguments; returns 1 when the fixed landmarks are missing."""
        landmarks = self.config.landmarks
        if not landmarks.fixed_points:
            self.logger.error(
                "ERROR: -fp should be given for %s in order to define the fixed image (source) landmarks.",
                self.component_label,
            )
            return 1
        self.logger.info("-fp       %s", landmarks.fixed_points)

        if landmarks.moving_points:
            self.logger.info("-mp       %s", landmarks.moving_points)
        else:
            self.logger.info("-mp       unspecified, assumed equal to -fp")
        return 0

    def before_registration(self) -> KernelTransform:
        """
        Configure and fit the kernel transform from the configuration.

        Returns:
            The fitted KernelTransform; its parameters are also stored as
            ``initial_parameters``.

        Raises:
            ConfigurationError: Unknown kernel type or missing fixed landmarks.
            SplineKernelError: Any loading or fitting failure, labelled with
                the component label.
        """
        spline = self.config.spline
        transform = KernelTransform(self.dimension)

        if not transform.set_kernel_type(spline.kernel_type):
            self.logger.error("ERROR: The kernel type %s is not supported.", spline.kernel_type)
            raise ConfigurationError(
                "unable to configure: unsupported kernel type",
                component=self.component_label,
                value=spline.kernel_type,
            )

        try:
            transform.set_stiffness(spline.relaxation_factor)
            if transform.kernel_family.uses_poisson_ratio:
                transform.set_poisson_ratio(spline.poisson_ratio)
            transform.set_inversion_method(spline.matrix_inversion_method)

            self.kernel_transform = transform
            self.determine_source_landmarks()
            if not self.determine_target_landmarks():
                transform.set_identity()
        except SplineKernelError as e:
            self.kernel_transform = None
            labelled = self._labelled(e)
            if labelled is e:
                raise
            raise labelled from e

        self.initial_parameters = transform.get_parameters()
        return transform

    def determine_source_landmarks(self) -> None:
        """Load the fixed image landmarks and set them as source landmarks."""
        path = self.config.landmarks.fixed_points
        if not path:
            raise ConfigurationError(
                "no fixed image landmark file (-fp) given", component=self.component_label
            )

        self.logger.info("Loading fixed image landmarks for %s:SplineKernelTransform.", self.component_label)
        landmarks = self._read_landmark_file(path, LandmarkRole.FIXED)

        self.logger.info("  Setting the fixed image landmarks (requiring large matrix inversion) ...")
        start = time.time()
        self.kernel_transform.set_source_landmarks(landmarks)
        self.logger.info("  Setting the fixed image landmarks took: %.4f s", time.time() - start)

    def determine_target_landmarks(self) -> bool:
        """Load the moving image landmarks; returns False when none are configured."""
        path = self.config.landmarks.moving_points
        if not path:
            return False

        self.logger.info("Loading moving image landmarks for %s:SplineKernelTransform.", self.component_label)
        landmarks = self._read_landmark_file(path, LandmarkRole.MOVING)

        self.logger.info("  Setting the moving image landmarks ...")
        start = time.time()
        self.kernel_transform.set_target_landmarks(landmarks)
        self.logger.info("  Setting the moving image landmarks took: %.4f s", time.time() - start)
        return True

    def _read_landmark_file(self, path: str, role: LandmarkRole) -> LandmarkSet:
        loader = LandmarkLoader(dimension=self.dimension, log=self.logger)
        geometry = self.fixed_geometry if role is LandmarkRole.FIXED else self.moving_geometry
        try:
            return loader.load(
                path,
                role=role,
                geometry=geometry,
                initial_transform=self.initial_transform,
                use_composition=self.config.landmarks.use_composition,
            )
        except FileNotFoundError as e:
            self.logger.error("  Error while opening landmark file.")
            raise FileFormatError(str(e), component=self.component_label, value=path) from e
        except SplineKernelError:
            self.logger.error("  Error while reading landmark file %s.", path)
            raise

    # ------------------------ Persistence ------------------------

    def write_to_file(self, path: Union[str, Path]) -> Path:
        if self.kernel_transform is None or not self.kernel_transform.is_fitted:
            raise ConfigurationError("transform is not configured", component=self.component_label)
        return write_transform_parameter_file(self.kernel_transform, path)

    def read_from_file(self, path: Union[str, Path]) -> KernelTransform:
        try:
            self.kernel_transform = read_transform_parameter_file(path, dimension=self.dimension)
        except SplineKernelError as e:
            self.logger.error("ERROR: unable to configure transform from %s.", path)
            self.kernel_transform = None
            labelled = self._labelled(e)
            if labelled is e:
                raise
            raise labelled from e
        return self.kernel_transform

    def _labelled(self, error: SplineKernelError) -> SplineKernelError:
        if error.component:
            return error
        return error.with_component(self.component_label)
