"""
Integration tests for SplineKernelTransformComponent.

Landmark files are written to a temporary directory and the component is
driven through its lifecycle: argument check, fitting, and saving.
"""

import logging

import numpy as np
import pytest

from spline_kernel_registration.preprocessing.grid_geometry import GridGeometry
from spline_kernel_registration.registration.spline_kernel_component import SplineKernelTransformComponent
from spline_kernel_registration.transform.kernels import KernelFamily
from spline_kernel_registration.utils.config import AppConfig, LandmarksConfig, SplineKernelConfig
from spline_kernel_registration.utils.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    FileFormatError,
    MissingGeometryError,
)


def _write(tmp_path, name, kind, points):
    lines = [kind, str(len(points))] + [" ".join(str(v) for v in p) for p in points]
    path = tmp_path / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def _config(fixed=None, moving=None, kernel_type="ThinPlateSpline", **spline):
    return AppConfig(
        spline=SplineKernelConfig(kernel_type=kernel_type, **spline),
        landmarks=LandmarksConfig(fixed_points=fixed, moving_points=moving),
    )


SQUARE = [[0, 0], [0, 1], [1, 0], [1, 1]]
SQUARE_X2 = [[0, 0], [0, 2], [2, 0], [2, 2]]

CUBE = [[0, 0, 0], [0, 0, 1], [0, 1, 0], [1, 0, 0], [1, 1, 1], [0.5, 0.2, 0.7]]
CUBE_MOVED = [[0.1, 0, 0], [0, 0, 1.2], [0, 1.1, 0], [1, 0, 0.1], [1.2, 1, 1], [0.5, 0.3, 0.7]]


class TestLifecycle:
    """Tests for before_all and before_registration."""

    def test_unit_square_scaled_by_two(self, tmp_path):
        """Index landmarks on a unit square mapped onto a square twice the size."""
        geometry = GridGeometry(origin=[0.0, 0.0], spacing=[1.0, 1.0])
        config = _config(
            fixed=_write(tmp_path, "fixed.txt", "index", SQUARE),
            moving=_write(tmp_path, "moving.txt", "index", SQUARE_X2),
        )
        component = SplineKernelTransformComponent(
            config, 2, fixed_geometry=geometry, moving_geometry=geometry
        )
        assert component.before_all() == 0

        transform = component.before_registration()
        assert transform.kernel_family is KernelFamily.THIN_PLATE_R2LOGR_SPLINE
        np.testing.assert_allclose(transform.transform_point([0.5, 0.5]), [1.0, 1.0], atol=1e-9)
        np.testing.assert_array_equal(component.initial_parameters, transform.get_parameters())

    def test_point_landmarks_3d(self, tmp_path):
        config = _config(
            fixed=_write(tmp_path, "fixed.txt", "point", CUBE),
            moving=_write(tmp_path, "moving.txt", "point", CUBE_MOVED),
            kernel_type="VolumeSpline",
            matrix_inversion_method="QR",
        )
        transform = SplineKernelTransformComponent(config, 3).before_registration()
        np.testing.assert_allclose(transform.transform_points(np.array(CUBE)), CUBE_MOVED, atol=1e-6)

    def test_missing_moving_landmarks_gives_identity(self, tmp_path):
        config = _config(fixed=_write(tmp_path, "fixed.txt", "point", CUBE))
        component = SplineKernelTransformComponent(config, 3)
        assert component.before_all() == 0

        transform = component.before_registration()
        np.testing.assert_allclose(transform.transform_points(np.array(CUBE)), CUBE)
        assert np.all(component.initial_parameters == 0.0)

    def test_before_all_requires_fixed_landmarks(self):
        component = SplineKernelTransformComponent(_config(), 3)
        assert component.before_all() == 1

    def test_before_all_logs_assumed_moving(self, tmp_path, caplog):
        config = _config(fixed=_write(tmp_path, "fixed.txt", "point", CUBE))
        with caplog.at_level(logging.INFO, logger="spline_kernel_registration"):
            SplineKernelTransformComponent(config, 3).before_all()
        assert "unspecified, assumed equal to -fp" in caplog.text

    def test_poisson_ratio_only_for_elastic_kernels(self, tmp_path):
        fixed = _write(tmp_path, "fixed.txt", "point", CUBE)
        thin = SplineKernelTransformComponent(_config(fixed=fixed, poisson_ratio=0.45), 3).before_registration()
        elastic = SplineKernelTransformComponent(
            _config(fixed=fixed, kernel_type="ElasticBodySpline", poisson_ratio=0.45), 3
        ).before_registration()
        assert thin.poisson_ratio == pytest.approx(0.3)
        assert elastic.poisson_ratio == pytest.approx(0.45)

    def test_relaxation_factor_is_applied(self, tmp_path):
        fixed = _write(tmp_path, "fixed.txt", "point", CUBE)
        transform = SplineKernelTransformComponent(
            _config(fixed=fixed, relaxation_factor=0.25), 3
        ).before_registration()
        assert transform.stiffness == pytest.approx(0.25)

    def test_composition_with_initial_transform(self, tmp_path):
        matrix = np.eye(4)
        matrix[:3, 3] = [5.0, 0.0, 0.0]
        config = _config(fixed=_write(tmp_path, "fixed.txt", "point", CUBE))
        config.landmarks.use_composition = True

        component = SplineKernelTransformComponent(config, 3, initial_transform=matrix)
        transform = component.before_registration()
        np.testing.assert_allclose(transform.get_source_landmarks(), np.array(CUBE) + [5.0, 0.0, 0.0])


class TestErrors:
    """Tests for error reporting with the component label."""

    def test_unsupported_kernel_type(self, tmp_path):
        config = _config(fixed=_write(tmp_path, "fixed.txt", "point", CUBE), kernel_type="BogusSpline")
        component = SplineKernelTransformComponent(config, 3, component_label="Transform1")
        with pytest.raises(ConfigurationError) as excinfo:
            component.before_registration()

        message = str(excinfo.value)
        assert "Transform1" in message
        assert "BogusSpline" in message
        assert "unsupported kernel type" in message

    def test_missing_landmark_file(self, tmp_path):
        config = _config(fixed=str(tmp_path / "missing.txt"))
        with pytest.raises(FileFormatError) as excinfo:
            SplineKernelTransformComponent(config, 3).before_registration()
        assert excinfo.value.component == "Transform0"

    def test_malformed_landmark_file_is_labelled(self, tmp_path):
        path = tmp_path / "fixed.txt"
        path.write_text("points\n1\n1 2 3\n", encoding="utf-8")
        with pytest.raises(FileFormatError) as excinfo:
            SplineKernelTransformComponent(_config(fixed=str(path)), 3).before_registration()
        assert str(excinfo.value).startswith("Transform0: ")

    def test_non_utf8_landmark_file_is_labelled(self, tmp_path):
        path = tmp_path / "fixed.txt"
        path.write_bytes(b"point\n1\n1.0 2.0 \xff\n")
        with pytest.raises(FileFormatError) as excinfo:
            SplineKernelTransformComponent(_config(fixed=str(path)), 3).before_registration()
        assert excinfo.value.component == "Transform0"

    def test_non_finite_landmarks_are_labelled(self, tmp_path):
        points = [list(p) for p in CUBE]
        points[3][0] = "nan"
        config = _config(fixed=_write(tmp_path, "fixed.txt", "point", points))
        with pytest.raises(FileFormatError) as excinfo:
            SplineKernelTransformComponent(config, 3).before_registration()
        assert excinfo.value.component == "Transform0"

    def test_landmark_count_mismatch(self, tmp_path):
        config = _config(
            fixed=_write(tmp_path, "fixed.txt", "point", CUBE),
            moving=_write(tmp_path, "moving.txt", "point", CUBE_MOVED[:-1]),
        )
        component = SplineKernelTransformComponent(config, 3)
        with pytest.raises(DimensionMismatchError):
            component.before_registration()
        assert component.kernel_transform is None

    def test_index_landmarks_without_geometry(self, tmp_path):
        config = _config(fixed=_write(tmp_path, "fixed.txt", "index", SQUARE))
        with pytest.raises(MissingGeometryError):
            SplineKernelTransformComponent(config, 2).before_registration()

    def test_write_before_registration(self, tmp_path):
        component = SplineKernelTransformComponent(_config(), 3)
        with pytest.raises(ConfigurationError):
            component.write_to_file(tmp_path / "TransformParameters.0.txt")


def test_write_and_read_round_trip(tmp_path):
    config = _config(
        fixed=_write(tmp_path, "fixed.txt", "point", CUBE),
        moving=_write(tmp_path, "moving.txt", "point", CUBE_MOVED),
        kernel_type="ElasticBodySpline",
    )
    component = SplineKernelTransformComponent(config, 3)
    transform = component.before_registration()
    path = component.write_to_file(tmp_path / "TransformParameters.0.txt")

    reader = SplineKernelTransformComponent(_config(), 3)
    restored = reader.read_from_file(path)

    query = np.random.default_rng(2).uniform(0.0, 1.0, size=(10, 3))
    np.testing.assert_allclose(restored(query), transform(query))
    assert restored.kernel_family is KernelFamily.ELASTIC_BODY_SPLINE
