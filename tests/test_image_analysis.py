import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from threadstitch.image_analysis.edges import EdgeDetectionParameters, EdgeDetector, edge_density
from threadstitch.image_analysis.gradients import GradientComputer, GradientParameters, sobel_kernels
from threadstitch.image_analysis.pipeline import PreprocessingPipeline, validate_input
from threadstitch.image_analysis.preprocessor import (
    ImagePreprocessor,
    PreprocessingParameters,
    ensure_rgb_uint8,
)
from threadstitch.image_analysis.structure_tensor import StructureTensorAnalyzer
from threadstitch.utils.fields import gaussian_kernel
from threadstitch.utils.result import CancelToken, ErrorKind, Failure, ParameterError, Success


def _split_image(size=64):
    img = np.zeros((size, size, 3), dtype=np.uint8)
    img[:, size // 2 :] = 255
    return img


def _stripes(size=64, period=8):
    img = np.zeros((size, size, 3), dtype=np.uint8)
    for x in range(size):
        if (x // (period // 2)) % 2:
            img[:, x] = 255
    return img


def test_ensure_rgb_uint8_normalises_inputs():
    gray = np.full((4, 5), 0.5, dtype=np.float32)
    out = ensure_rgb_uint8(gray)
    assert out.shape == (4, 5, 3) and out.dtype == np.uint8
    assert int(out[0, 0, 0]) in (127, 128)

    rgba = np.zeros((3, 3, 4), dtype=np.uint8)
    assert ensure_rgb_uint8(rgba).shape == (3, 3, 3)

    with pytest.raises(ValueError):
        ensure_rgb_uint8(np.zeros((3, 3, 2)))


def test_preprocessor_resizes_and_keeps_dtype():
    img = np.random.default_rng(0).integers(0, 256, size=(80, 120, 3)).astype(np.uint8)
    result = ImagePreprocessor().process(img, PreprocessingParameters(max_dimension=60))
    assert isinstance(result, Success)
    assert result.data.shape == (40, 60, 3)
    assert result.data.dtype == np.uint8


def test_invalid_preprocessing_parameters_fail_with_validation():
    result = ImagePreprocessor().process(_split_image(), PreprocessingParameters(spatial_sigma=-1.0))
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.VALIDATION


def test_sobel_kernel_size_is_checked():
    gx, gy = sobel_kernels(3)
    assert gx.shape == (3, 3) and gy.shape == (3, 3)
    with pytest.raises(ParameterError):
        sobel_kernels(4)


def test_gradients_are_normalised_and_peak_at_the_step():
    result = GradientComputer().compute(_split_image(), GradientParameters())
    assert isinstance(result, Success)
    field = result.data
    assert field.is_valid
    # normalised by the pre-smoothing maximum
    assert 0.0 < field.magnitudes.max() <= 1.0
    column_energy = field.magnitudes.sum(axis=0)
    assert 28 <= int(np.argmax(column_energy)) <= 35


def test_canny_finds_vertical_edge_band_only():
    result = EdgeDetector().detect(_split_image(), EdgeDetectionParameters())
    assert isinstance(result, Success)
    edges = result.data
    assert edges.dtype == np.uint8
    cols = np.nonzero(edges.any(axis=0))[0]
    assert cols.size > 0
    assert cols.min() >= 26 and cols.max() <= 38
    band = edges[4:-4, 28:37]
    assert np.count_nonzero(band.any(axis=1)) >= band.shape[0] - 2
    assert 0.0 < edge_density(edges) < 0.2


def test_edge_parameters_must_be_ordered():
    assert not EdgeDetectionParameters(low_threshold=150, high_threshold=50).is_valid
    result = EdgeDetector().detect(_split_image(), EdgeDetectionParameters(low_threshold=150, high_threshold=50))
    assert isinstance(result, Failure) and result.kind is ErrorKind.VALIDATION


def test_structure_tensor_coherence_range_and_stripes():
    result = StructureTensorAnalyzer().analyze(_stripes())
    assert isinstance(result, Success)
    field = result.data
    assert field.is_valid
    assert np.all((field.coherences >= 0.0) & (field.coherences <= 1.0))
    # vertical stripes are strongly oriented in the middle of the image
    assert field.coherences[20:44, 20:44].mean() > 0.5


def test_uniform_image_has_no_structure():
    flat = np.full((40, 40, 3), 90, dtype=np.uint8)
    field = StructureTensorAnalyzer().analyze(flat).data
    assert np.allclose(field.coherences, 0.0)


@pytest.mark.parametrize("width,height", [(1, 1), (16, 64), (64, 31)])
def test_validate_input_rejects_small_images(width, height):
    result = validate_input(width, height)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.RESOURCE_LIMIT
    assert "too small" in result.error


def test_validate_input_rejects_large_images():
    result = validate_input(4097, 100)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.RESOURCE_LIMIT
    assert isinstance(validate_input(64, 64), Success)


def test_preprocessing_pipeline_progress_and_result():
    seen = []
    result = PreprocessingPipeline().process(_split_image(), progress_callback=lambda f, s: seen.append(f))
    assert isinstance(result, Success)
    data = result.data
    assert data.is_valid
    assert data.edge_map.shape == (64, 64)
    assert seen[-1] == pytest.approx(1.0)
    assert all(a <= b for a, b in zip(seen, seen[1:]))
    assert data.statistics()["total_pixels"] == 64 * 64


def test_preprocessing_pipeline_checks_image_size_first():
    result = PreprocessingPipeline().process(np.zeros((1, 1, 3), dtype=np.uint8))
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.RESOURCE_LIMIT
    assert "too small" in result.error


def test_preprocessing_pipeline_honours_cancellation():
    token = CancelToken()
    token.cancel()
    result = PreprocessingPipeline().process(_split_image(), cancel_token=token)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.CANCELLED


def test_gaussian_kernel_size_and_normalisation():
    size, kernel = gaussian_kernel(1.0)
    assert size == 7
    assert kernel.shape == (7,)
    assert kernel.sum() == pytest.approx(1.0)
    assert gaussian_kernel(1.5)[0] == 9


def test_structure_tensor_visualisations():
    field = StructureTensorAnalyzer().analyze(_stripes()).data
    colors = StructureTensorAnalyzer.visualize_orientations(field)
    grey = StructureTensorAnalyzer.visualize_coherence(field)
    assert colors.shape == (64, 64, 3) and colors.dtype == np.uint8
    assert grey.shape == (64, 64, 3)
    np.testing.assert_array_equal(grey[..., 0], grey[..., 2])
