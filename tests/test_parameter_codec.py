"""
Unit tests for the transform parameter codec and parameter files.

These tests verify:
- The layout and order of the spline kernel section
- Decoding of records, including defaults and missing fields
- Restoring a fitted transform from a parameter file
"""

import numpy as np
import pytest

from spline_kernel_registration.transform.kernel_transform import (
    InversionMethod,
    KernelTransform,
    KernelTransformState,
)
from spline_kernel_registration.transform.kernels import KernelFamily
from spline_kernel_registration.transform.parameter_codec import (
    decode,
    encode,
    format_directive,
    parse_parameter_text,
)
from spline_kernel_registration.transform.parameter_file import (
    format_transform_parameters,
    parse_transform_parameters,
    read_transform_parameter_file,
    write_transform_parameter_file,
)
from spline_kernel_registration.utils.exceptions import ConfigurationError, DimensionMismatchError


CANONICAL_RECORD = (
    "// SplineKernelTransform specific\n"
    '(SplineKernelType "ElasticBodySpline")\n'
    "(SplinePoissonRatio 0.25)\n"
    "(SplineRelaxationFactor 0.1)\n"
    '(TPSMatrixInversionMethod "QR")\n'
    "(NumberOfParameters 6)\n"
    "(FixedImageLandmarks 1.5 -2.0 3.0 4.0 5.0 6.0)\n"
)


def _fitted_transform(kernel_type="ThinPlateSpline"):
    rng = np.random.default_rng(21)
    source = rng.uniform(0.0, 10.0, size=(8, 3))
    kt = KernelTransform(3)
    kt.configure(kernel_type)
    kt.set_source_landmarks(source)
    kt.set_target_landmarks(source + rng.normal(scale=0.3, size=source.shape))
    return kt


class TestRecordSyntax:
    """Tests for the (Key value ...) record syntax."""

    def test_parse_values_and_comments(self):
        record = parse_parameter_text(
            '// header\n(Transform "SplineKernelTransform")\n\n(Values 1 2.5 -3) // trailing\n(Empty)\n'
        )
        assert record == {"Transform": ["SplineKernelTransform"], "Values": ["1", "2.5", "-3"], "Empty": []}

    def test_malformed_line(self):
        with pytest.raises(ConfigurationError):
            parse_parameter_text("SplineKernelType ThinPlateSpline\n")

    def test_format_directive(self):
        assert format_directive("SplineKernelType", "VolumeSpline") == '(SplineKernelType "VolumeSpline")'
        assert format_directive("NumberOfParameters", 3) == "(NumberOfParameters 3)"
        assert format_directive("FixedImageLandmarks", [1.0, 0.1]) == "(FixedImageLandmarks 1.0 0.1)"


class TestCodec:
    """Tests for encode and decode."""

    def test_encode_layout(self):
        state = KernelTransformState(
            kernel_type="ElasticBodySpline",
            kernel_family=KernelFamily.ELASTIC_BODY_SPLINE,
            dimension=3,
            stiffness=0.1,
            poisson_ratio=0.25,
            inversion_method=InversionMethod.QR,
            fixed_parameters=np.array([1.5, -2.0, 3.0, 4.0, 5.0, 6.0]),
        )
        assert encode(state) == CANONICAL_RECORD

    def test_encode_of_decode_is_identity(self):
        assert encode(decode(CANONICAL_RECORD, dimension=3)) == CANONICAL_RECORD

    def test_decode_fields(self):
        state = decode(CANONICAL_RECORD, dimension=3)
        assert state.kernel_family is KernelFamily.ELASTIC_BODY_SPLINE
        assert state.inversion_method is InversionMethod.QR
        assert state.stiffness == 0.1
        assert state.poisson_ratio == 0.25
        assert state.parameters is None
        np.testing.assert_array_equal(state.source_landmarks, [[1.5, -2.0, 3.0], [4.0, 5.0, 6.0]])

    def test_decode_of_encode_reproduces_state(self):
        state = _fitted_transform("VolumeSpline").get_state()
        decoded = decode(encode(state), dimension=3)
        assert decoded.kernel_type == state.kernel_type
        assert decoded.kernel_family is state.kernel_family
        assert decoded.stiffness == state.stiffness
        assert decoded.poisson_ratio == state.poisson_ratio
        assert decoded.inversion_method is state.inversion_method
        np.testing.assert_array_equal(decoded.fixed_parameters, state.fixed_parameters)

    def test_defaults(self):
        state = decode(
            '(SplineKernelType "VolumeSpline")\n(NumberOfParameters 3)\n(FixedImageLandmarks 1 2 3)\n',
            dimension=3,
        )
        assert state.stiffness == 0.0
        assert state.poisson_ratio == 0.3
        assert state.inversion_method is InversionMethod.SVD

    def test_dimension_from_record(self):
        state = decode("(FixedImageDimension 2)\n" + CANONICAL_RECORD)
        assert state.dimension == 2
        # 2D always uses the r^2 log r kernel
        assert state.kernel_family is KernelFamily.THIN_PLATE_R2LOGR_SPLINE

    def test_dimension_missing(self):
        with pytest.raises(ConfigurationError):
            decode(CANONICAL_RECORD)

    def test_missing_kernel_type(self):
        text = CANONICAL_RECORD.replace('(SplineKernelType "ElasticBodySpline")\n', "")
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)

    def test_unsupported_kernel_type(self):
        text = CANONICAL_RECORD.replace("ElasticBodySpline", "ThinPlateR2LogRSpline")
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)

    def test_missing_number_of_parameters(self):
        text = CANONICAL_RECORD.replace("(NumberOfParameters 6)\n", "")
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)

    def test_missing_fixed_landmarks(self):
        text = CANONICAL_RECORD.replace("(FixedImageLandmarks 1.5 -2.0 3.0 4.0 5.0 6.0)\n", "")
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)

    def test_landmark_count_mismatch(self):
        text = CANONICAL_RECORD.replace(" 6.0)", ")")
        with pytest.raises(DimensionMismatchError):
            decode(text, dimension=3)

    def test_landmark_count_mismatch_without_dimension(self):
        """The count check does not depend on knowing the dimension."""
        text = CANONICAL_RECORD.replace(" 6.0)", ")")
        with pytest.raises(DimensionMismatchError):
            decode(text)

    def test_landmarks_not_multiple_of_dimension(self):
        with pytest.raises(DimensionMismatchError):
            decode(CANONICAL_RECORD, dimension=4)

    def test_invalid_inversion_method(self):
        text = CANONICAL_RECORD.replace('"QR"', '"Cholesky"')
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)

    def test_non_numeric_relaxation_factor(self):
        text = CANONICAL_RECORD.replace("(SplineRelaxationFactor 0.1)", "(SplineRelaxationFactor soft)")
        with pytest.raises(ConfigurationError):
            decode(text, dimension=3)


class TestParameterFile:
    """Tests for complete transform parameter files."""

    def test_write_and_read(self, tmp_path):
        kt = _fitted_transform("ElasticBodyReciprocalSpline")
        path = write_transform_parameter_file(kt, tmp_path / "out" / "TransformParameters.0.txt")
        assert path.exists()

        restored = read_transform_parameter_file(path)
        query = np.random.default_rng(4).uniform(0.0, 10.0, size=(15, 3))
        np.testing.assert_allclose(restored(query), kt(query))

    def test_header(self):
        text = format_transform_parameters(_fitted_transform())
        lines = text.splitlines()
        assert lines[0] == '(Transform "SplineKernelTransform")'
        assert lines[1] == "(FixedImageDimension 3)"
        assert lines[2].startswith("(TransformParameters ")
        assert "// SplineKernelTransform specific" in lines

    def test_wrong_transform_name(self):
        text = format_transform_parameters(_fitted_transform())
        text = text.replace('"SplineKernelTransform"', '"AffineTransform"', 1)
        with pytest.raises(ConfigurationError):
            parse_transform_parameters(text)

    def test_wrong_number_of_weights(self):
        kt = _fitted_transform()
        text = format_transform_parameters(kt)
        weights = " ".join(repr(float(v)) for v in kt.get_parameters()[:-1])
        lines = [
            f"(TransformParameters {weights})" if line.startswith("(TransformParameters") else line
            for line in text.splitlines()
        ]
        with pytest.raises(DimensionMismatchError):
            parse_transform_parameters("\n".join(lines))

    def test_missing_weights_gives_identity(self):
        text = "(FixedImageDimension 3)\n" + CANONICAL_RECORD.replace('"QR"', '"SVD"')
        restored = parse_transform_parameters(text)
        points = restored.get_source_landmarks()
        np.testing.assert_allclose(restored(points), points)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_transform_parameter_file(tmp_path / "missing.txt")
