"""Unit tests for per-pixel metrics, post-processing, and tonemaps."""

import numpy as np
import pytest

from hdr_inspector.operators import (
    FALSE_COLOR_STOPS,
    Metric,
    PostProcessing,
    Tonemap,
    apply_exposure_and_offset,
    apply_metric,
    apply_post_processing,
    apply_post_processing_rgb,
    apply_tonemap,
    false_color,
    false_color_colormap,
    parse_metric,
    parse_post_processing,
    parse_tonemap,
    to_linear,
    to_srgb,
)


class TestMetrics:
    """Test comparison metrics on scalars and arrays."""

    @pytest.mark.parametrize(
        "metric,expected",
        [
            (Metric.ERROR, 2.0),
            (Metric.ABSOLUTE_ERROR, 2.0),
            (Metric.SQUARED_ERROR, 4.0),
            (Metric.RELATIVE_ABSOLUTE_ERROR, 2.0 / 1.001),
            (Metric.RELATIVE_SQUARED_ERROR, 4.0 / 1.001),
            (Metric.DIVISION, 3.001 / 1.001),
        ],
    )
    def test_metric_values(self, metric, expected):
        """Test each metric against hand-computed values."""
        assert apply_metric(3.0, 1.0, metric) == pytest.approx(expected)

    def test_absolute_error_is_symmetric(self):
        """Test AE ignores the sign of the difference."""
        assert apply_metric(1.0, 3.0, Metric.ABSOLUTE_ERROR) == pytest.approx(2.0)

    def test_error_of_identical_inputs_is_zero(self):
        """Test identical image and reference give zero error everywhere."""
        data = np.linspace(-5, 5, 11, dtype=np.float32)
        np.testing.assert_array_equal(apply_metric(data, data, Metric.ERROR), np.zeros_like(data))

    def test_custom_epsilon(self):
        """Test epsilon is configurable for the relative metrics."""
        assert apply_metric(2.0, 0.0, Metric.DIVISION, epsilon=1.0) == pytest.approx(3.0)

    def test_invalid_metric_raises(self):
        """Test non-enum metrics are rejected."""
        with pytest.raises(ValueError, match="Invalid metric"):
            apply_metric(1.0, 1.0, 7)


class TestPostProcessing:
    """Test scalar and RGB post-processing."""

    def test_identity_and_square(self):
        """Test identity passthrough and squaring."""
        assert apply_post_processing(-3.0, PostProcessing.IDENTITY) == -3.0
        assert apply_post_processing(-3.0, PostProcessing.SQUARE) == 9.0

    def test_square_is_non_negative(self):
        """Test squared output is never negative."""
        data = np.linspace(-10, 10, 21)
        assert np.all(apply_post_processing(data, PostProcessing.SQUARE) >= 0)

    def test_clip_bounds(self):
        """Test clipping only limits the upper end."""
        data = np.array([-50.0, 5.0, 50.0, 500.0])
        np.testing.assert_array_equal(
            apply_post_processing(data, PostProcessing.CLIP10), [-50.0, 5.0, 10.0, 10.0]
        )
        np.testing.assert_array_equal(
            apply_post_processing(data, PostProcessing.CLIP100), [-50.0, 5.0, 50.0, 100.0]
        )

    def test_magnitude_scalar_path_raises(self):
        """Test magnitude is refused on single samples."""
        with pytest.raises(ValueError, match="Magnitude"):
            apply_post_processing(1.0, PostProcessing.MAGNITUDE)

    def test_magnitude_rgb(self):
        """Test magnitude broadcasts the vector length to every component."""
        out = apply_post_processing_rgb(np.array([[3.0, 4.0, 0.0]]), PostProcessing.MAGNITUDE)
        np.testing.assert_allclose(out, [[5.0, 5.0, 5.0]])

    def test_rgb_scalar_variant_is_componentwise(self):
        """Test non-magnitude variants apply per component in the RGB path."""
        out = apply_post_processing_rgb(np.array([1.0, -2.0, 3.0]), PostProcessing.SQUARE)
        np.testing.assert_allclose(out, [1.0, 4.0, 9.0])

    def test_invalid_post_processing_raises(self):
        """Test non-enum post-processing is rejected."""
        with pytest.raises(ValueError, match="Invalid post processing"):
            apply_post_processing(1.0, "square")


class TestExposureAndSrgb:
    """Test exposure/offset and the sRGB transfer curve."""

    def test_exposure_and_offset(self):
        """Test 2**exposure scaling followed by offset."""
        assert apply_exposure_and_offset(1.0, 1.0, 0.5) == pytest.approx(2.5)
        assert apply_exposure_and_offset(4.0, -2.0) == pytest.approx(1.0)

    def test_srgb_endpoints(self):
        """Test the curve maps 0 and 1 to themselves."""
        assert to_srgb(0.0) == pytest.approx(0.0)
        assert to_srgb(1.0) == pytest.approx(1.0)

    def test_srgb_linear_segment(self):
        """Test small values use the linear segment."""
        assert to_srgb(0.001) == pytest.approx(0.01292)

    def test_srgb_inverse(self):
        """Test decoding recovers the linear value."""
        assert to_linear(to_srgb(0.5)) == pytest.approx(0.5)

    def test_srgb_returns_float_for_scalar(self):
        """Test scalar input gives a plain float."""
        assert isinstance(to_srgb(0.5), float)


class TestTonemaps:
    """Test tonemaps on RGB vectors."""

    def test_srgb_clamps(self):
        """Test out-of-range values are clamped to [0, 1]."""
        out = apply_tonemap(np.array([10.0, -1.0, 0.5]), Tonemap.SRGB)
        np.testing.assert_allclose(out, [1.0, 0.0, to_srgb(0.5)])

    def test_gamma(self):
        """Test gamma applies 1/gamma as exponent."""
        out = apply_tonemap(np.full(3, 0.25), Tonemap.GAMMA, gamma=2.0)
        np.testing.assert_allclose(out, [0.5, 0.5, 0.5])

    def test_gamma_negative_is_black(self):
        """Test negative input maps to 0 under gamma."""
        out = apply_tonemap(np.full(3, -0.25), Tonemap.GAMMA)
        np.testing.assert_array_equal(out, [0.0, 0.0, 0.0])

    def test_false_color_endpoints(self):
        """Test black maps to the first stop and bright to the last."""
        low = apply_tonemap(np.zeros(3), Tonemap.FALSE_COLOR)
        high = apply_tonemap(np.full(3, 1000.0), Tonemap.FALSE_COLOR)
        np.testing.assert_allclose(low, FALSE_COLOR_STOPS[0], atol=1e-9)
        np.testing.assert_allclose(high, FALSE_COLOR_STOPS[-1], atol=1e-9)

    def test_positive_negative(self):
        """Test negatives go to red and positives to green."""
        neg = apply_tonemap(np.full(3, -1.0), Tonemap.POSITIVE_NEGATIVE)
        pos = apply_tonemap(np.full(3, 0.25), Tonemap.POSITIVE_NEGATIVE)
        np.testing.assert_allclose(neg, [1.0, 0.0, 0.0])
        np.testing.assert_allclose(pos, [0.0, 0.5, 0.0])

    def test_complex_is_black(self):
        """Test the complex tonemap yields black."""
        out = apply_tonemap(np.array([[0.3, 2.0, -1.0]]), Tonemap.COMPLEX)
        np.testing.assert_array_equal(out, [[0.0, 0.0, 0.0]])

    def test_vector(self):
        """Test unit vectors are remapped from [-1, 1] to sRGB [0, 1]."""
        out = apply_tonemap(np.array([2.0, 0.0, 0.0]), Tonemap.VECTOR)
        np.testing.assert_allclose(out, [1.0, to_srgb(0.5), to_srgb(0.5)])

    def test_vector_zero_length(self):
        """Test zero vectors pass through as black."""
        out = apply_tonemap(np.zeros(3), Tonemap.VECTOR)
        np.testing.assert_array_equal(out, [0.0, 0.0, 0.0])

    def test_false_color_ramp(self):
        """Test the ramp runs from blue to red."""
        low = apply_tonemap(np.zeros(3), Tonemap.FALSE_COLOR_RAMP)
        high = apply_tonemap(np.ones(3), Tonemap.FALSE_COLOR_RAMP)
        np.testing.assert_allclose(low, [0.0, 0.0, 1.0])
        np.testing.assert_allclose(high, [1.0, 0.0, 0.0])

    def test_output_range_for_every_tonemap(self):
        """Test every tonemap output lies in [0, 1]."""
        rng = np.random.default_rng(3)
        rgb = rng.normal(scale=20.0, size=(64, 3))
        for tonemap in Tonemap:
            out = apply_tonemap(rgb, tonemap)
            assert out.shape == rgb.shape
            assert np.all((out >= 0.0) & (out <= 1.0)), tonemap

    def test_wrong_shape_raises(self):
        """Test non-RGB input is rejected."""
        with pytest.raises(ValueError, match="last axis"):
            apply_tonemap(np.zeros(4), Tonemap.SRGB)

    def test_invalid_tonemap_raises(self):
        """Test non-enum tonemaps are rejected."""
        with pytest.raises(ValueError, match="Invalid tonemap"):
            apply_tonemap(np.zeros(3), "srgb")


class TestFalseColorRamp:
    """Test the false-color ramp helpers."""

    def test_midpoint_hits_middle_stop(self):
        """Test t=0.5 lands exactly on the middle stop."""
        np.testing.assert_allclose(false_color(0.5), FALSE_COLOR_STOPS[2])

    def test_colormap_matches_stops(self):
        """Test the matplotlib colormap starts at the first stop."""
        cmap = false_color_colormap()
        np.testing.assert_allclose(cmap(0.0)[:3], FALSE_COLOR_STOPS[0], atol=1e-6)
        np.testing.assert_allclose(cmap(1.0)[:3], FALSE_COLOR_STOPS[-1], atol=1e-6)


class TestParsing:
    """Test lookup of operators by code or name."""

    def test_parse_codes(self):
        """Test short codes."""
        assert parse_metric("RSE") is Metric.RELATIVE_SQUARED_ERROR
        assert parse_post_processing("c10") is PostProcessing.CLIP10
        assert parse_tonemap("FC") is Tonemap.FALSE_COLOR

    def test_parse_names(self):
        """Test member names in several spellings."""
        assert parse_metric("relative_squared_error") is Metric.RELATIVE_SQUARED_ERROR
        assert parse_metric("RelativeSquaredError") is Metric.RELATIVE_SQUARED_ERROR
        assert parse_tonemap("sRGB") is Tonemap.SRGB
        assert parse_tonemap("positive-negative") is Tonemap.POSITIVE_NEGATIVE

    def test_parse_enum_passthrough(self):
        """Test enum members are returned unchanged."""
        assert parse_metric(Metric.DIVISION) is Metric.DIVISION

    def test_parse_unknown_raises(self):
        """Test unknown names raise."""
        with pytest.raises(ValueError, match="Unknown tonemap"):
            parse_tonemap("bogus")
