import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from threadstitch.quantization.catalog import ThreadCatalog, ThreadColor
from threadstitch.quantization.dither import (
    DitheringEffectiveness,
    DitheringParameters,
    FloydSteinbergDitherer,
    analyze_banding,
    create_gradient_test_pattern,
    is_valid_palette,
    nearest_palette_mapping,
)
from threadstitch.quantization.kmeans import KMeansColorQuantizer, count_unique_colors, estimate_optimal_clusters
from threadstitch.quantization.matcher import ColorDistanceAlgorithm, ColorMatcher
from threadstitch.quantization.quantizer import (
    ColorQuantizer,
    QuantizationParameters,
    thread_recommendations,
)
from threadstitch.utils.color_model import ciede2000
from threadstitch.utils.result import ErrorKind, Failure, ParameterError, Success

PURE = {
    "red": (255, 0, 0),
    "green": (0, 255, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
}


def _quadrants(size=64):
    img = np.zeros((size, size, 3), dtype=np.uint8)
    h = size // 2
    img[:h, :h] = PURE["red"]
    img[:h, h:] = PURE["green"]
    img[h:, :h] = PURE["blue"]
    img[h:, h:] = PURE["yellow"]
    return img


def _catalog():
    records = [
        {"code": "R", "name": "Red", "rgb": [250, 5, 5]},
        {"code": "G", "name": "Green", "rgb": [5, 250, 5]},
        {"code": "B", "name": "Blue", "rgb": [5, 5, 250]},
        {"code": "Y", "name": "Yellow", "rgb": [250, 250, 5]},
        {"code": "K", "name": "Black", "rgb": [0, 0, 0]},
        {"code": "W", "name": "White", "rgb": [255, 255, 255]},
    ]
    return ThreadCatalog.from_records("Test", records)


def test_kmeans_solid_image_single_cluster():
    img = np.full((64, 64, 3), (40, 120, 200), dtype=np.uint8)
    result = KMeansColorQuantizer().quantize(img, 1)
    assert isinstance(result, Success)
    clustering = result.data
    assert clustering.cluster_count == 1
    assert clustering.clusters[0].member_count == 4096
    assert clustering.total_pixels == 4096
    assert clustering.converged


def test_kmeans_four_quadrants_recovers_pure_colors():
    clustering = KMeansColorQuantizer().quantize(_quadrants(), 4).data
    assert clustering.cluster_count == 4
    centers = clustering.dominant_colors
    for color in PURE.values():
        assert min(ciede2000(color, c) for c in centers) < 5.0
    assert sorted(c.member_count for c in clustering.clusters) == [1024] * 4


def test_kmeans_rejects_bad_cluster_counts():
    for count in (0, 65):
        result = KMeansColorQuantizer().quantize(_quadrants(), count)
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.VALIDATION


def test_count_unique_colors():
    assert count_unique_colors(_quadrants()) == 4


def test_dithering_gradient_against_three_greys():
    gradient = create_gradient_test_pattern(64, 64)
    palette = [(0, 0, 0), (128, 128, 128), (255, 255, 255)]
    result = FloydSteinbergDitherer().dither(gradient, palette, DitheringParameters())
    assert isinstance(result, Success)
    dithered = result.data
    assert dithered.average_error < 0.5
    assert dithered.quality_score > 50.0
    assert dithered.is_effective
    assert dithered.effectiveness in (DitheringEffectiveness.EXCELLENT, DitheringEffectiveness.GOOD)
    assert dithered.error_at(-1, 0) == 0.0
    assert 0.0 <= dithered.error_at(10, 10) <= dithered.max_error
    colors = {tuple(int(v) for v in px) for px in dithered.dithered_image.reshape(-1, 3)}
    assert colors <= set(palette)
    np.testing.assert_array_equal(np.asarray(palette, dtype=np.uint8)[dithered.index_map], dithered.dithered_image)


def test_dithering_requires_palette_and_valid_strength():
    img = create_gradient_test_pattern(32, 32)
    assert isinstance(FloydSteinbergDitherer().dither(img, []), Failure)
    bad = FloydSteinbergDitherer().dither(img, [(0, 0, 0)], DitheringParameters(strength=1.5))
    assert isinstance(bad, Failure) and bad.kind is ErrorKind.VALIDATION


def test_palette_helpers():
    assert is_valid_palette([(0, 0, 0), (1, 1, 1)])
    assert not is_valid_palette([(0, 0, 0), (0, 0, 0)])
    assert not is_valid_palette([])
    mapped, index_map = nearest_palette_mapping(_quadrants(32), [(255, 0, 0), (0, 0, 255)])
    assert index_map[0, 0] == 0 and index_map[-1, 0] == 1
    assert tuple(mapped[0, 0]) == (255, 0, 0)


def test_matcher_exact_and_nearest():
    matcher = ColorMatcher([_catalog()])
    assert matcher.thread_count == 6
    assert matcher.find_exact((0, 0, 0)).code == "K"
    assert matcher.find_exact((1, 2, 3)) is None
    assert matcher.find_optimal_match((240, 10, 10), ColorDistanceAlgorithm.CIEDE2000).code == "R"
    assert matcher.find_nearest((10, 10, 240)).code == "B"
    assert [t.code for t in matcher.find_k_nearest((255, 255, 255), 2)][0] == "W"
    with pytest.raises(ParameterError):
        matcher.find_k_nearest((0, 0, 0), 0)
    with pytest.raises(ParameterError):
        ColorMatcher([])


def test_quantizer_end_to_end_on_quadrants():
    seen = []
    result = ColorQuantizer().quantize(
        _quadrants(),
        [_catalog()],
        QuantizationParameters(color_limit=4),
        progress_callback=lambda f, s: seen.append(f),
    )
    assert isinstance(result, Success)
    quantized = result.data
    assert quantized.quantized_image.shape == (64, 64, 3)
    assert {t.code for t in quantized.used_threads} == {"R", "G", "B", "Y"}

    usage = quantized.thread_usage
    assert sum(usage.coverage_percentages) == pytest.approx(100.0)
    assert usage.estimated_cost == pytest.approx(usage.total_thread_length * 0.5)

    metrics = quantized.quality_metrics
    for value in (
        metrics.color_accuracy,
        metrics.dithering_quality,
        metrics.clustering_quality,
        metrics.thread_match_quality,
        metrics.visual_similarity,
        metrics.overall_score,
    ):
        assert 0.0 <= value <= 100.0
    assert quantized.meets_quality_standards == (metrics.overall_score >= 70.0)
    assert metrics.quality_level.value in ("excellent", "good", "acceptable", "poor")
    assert quantized.summary()["quantized_colors"] == 4

    assert seen[0] == pytest.approx(0.0) and seen[-1] == pytest.approx(1.0)
    assert all(a <= b for a, b in zip(seen, seen[1:]))

    red_mask = quantized.thread_mask("R")
    assert red_mask[:32, :32].all() and not red_mask[32:, 32:].any()


def test_matcher_clamps_out_of_range_channels():
    matcher = ColorMatcher([_catalog()])
    assert matcher.find_exact((256, 300, 999)).code == "W"
    assert matcher.find_exact((-1, -40, 0)).code == "K"
    assert matcher.find_nearest((300, 260, 256)).code == "W"


def test_quantizer_keeps_same_code_from_two_catalogs_apart():
    alpha = ThreadCatalog.from_records("Alpha", [{"code": "001", "name": "Red", "rgb": [250, 5, 5]}])
    beta = ThreadCatalog.from_records("Beta", [{"code": "001", "name": "Blue", "rgb": [5, 5, 250]}])
    img = np.zeros((64, 64, 3), dtype=np.uint8)
    img[:, :32] = PURE["red"]
    img[:, 32:] = PURE["blue"]

    result = ColorQuantizer().quantize(
        img, [alpha, beta], QuantizationParameters(color_limit=2, enable_dithering=False)
    )
    assert isinstance(result, Success)
    quantized = result.data
    assert {t.key for t in quantized.used_threads} == {("Alpha", "001"), ("Beta", "001")}
    usage = quantized.thread_usage
    assert usage.thread_count == 2
    assert list(usage.coverage_percentages) == pytest.approx([50.0, 50.0])

    red_mask = quantized.thread_mask("001", "Alpha")
    assert red_mask[:, :32].all() and not red_mask[:, 32:].any()
    assert quantized.thread_mask("001").all()


def test_quantizer_without_dithering_uses_nearest_mapping():
    result = ColorQuantizer().quantize(
        _quadrants(), [_catalog()], QuantizationParameters(color_limit=4, enable_dithering=False)
    )
    quantized = result.data
    assert quantized.dithering.strength == 0.0
    assert not quantized.dithering.error_map.any()
    assert quantized.dithering.original_color_count == 4


def test_quantizer_failures():
    quantizer = ColorQuantizer()
    small = quantizer.quantize(np.zeros((16, 16, 3), dtype=np.uint8), [_catalog()])
    assert isinstance(small, Failure) and small.kind is ErrorKind.RESOURCE_LIMIT

    bad = quantizer.quantize(_quadrants(), [_catalog()], QuantizationParameters(color_limit=0))
    assert isinstance(bad, Failure) and bad.kind is ErrorKind.VALIDATION

    empty = quantizer.quantize(_quadrants(), [])
    assert isinstance(empty, Failure) and empty.kind is ErrorKind.VALIDATION


def test_optimal_parameters_and_time_estimate():
    assert QuantizationParameters.optimal_for(200, 200).color_limit == 8
    assert QuantizationParameters.optimal_for(500, 500).color_limit == 16
    assert QuantizationParameters.optimal_for(1000, 1000).color_limit == 24
    params = QuantizationParameters()
    assert ColorQuantizer.estimate_processing_time(100, 100, params) >= 1.0


def test_thread_recommendations():
    threads = [ThreadColor(f"T{i}", str(i), 0, 0, 0, f"cat{i}") for i in range(5)]
    notes = thread_recommendations(threads, [60.0, 30.0, 4.0, 3.0, 3.0], [150.0, 1.0, 1.0, 1.0, 1.0])
    assert any(n.startswith("Primary thread (T0) covers 60.0%") for n in notes)
    assert "Consider consolidating 3 minor thread colors" in notes
    assert any(n.startswith("High thread usage") for n in notes)
    assert "Using threads from 5 catalogs - may affect availability" in notes


def test_matcher_ranked_and_batch_lookups():
    matcher = ColorMatcher([_catalog(), ThreadCatalog.from_records("Other", [{"code": "K2", "rgb": [0, 0, 0]}])])
    assert [t.code for t in matcher.find_all_exact((0, 0, 0))] == ["K", "K2"]

    top = matcher.find_top_matches((245, 10, 10), 3)
    assert top[0].code == "R"
    assert top[0].percentage >= top[1].percentage >= top[2].percentage

    batch = matcher.batch_match([(0, 0, 0), (0, 0, 0), (250, 250, 10)])
    assert set(batch) == {(0, 0, 0), (250, 250, 10)}
    assert batch[(250, 250, 10)].code == "Y"

    white = matcher.find_exact((255, 255, 255))
    assert ColorMatcher.color_difference(white, (255, 255, 255)) == pytest.approx(100.0)
    assert ColorMatcher.color_difference(white, (0, 0, 0)) == pytest.approx(0.0)


def test_cluster_estimate_and_banding():
    assert estimate_optimal_clusters(_quadrants()) == 2
    gradient = create_gradient_test_pattern(64, 64)
    assert estimate_optimal_clusters(gradient) == 8

    flat = FloydSteinbergDitherer().dither(np.full((32, 32, 3), 255, dtype=np.uint8), [(255, 255, 255)]).data
    assert analyze_banding(flat) == 0.0
    dithered = FloydSteinbergDitherer().dither(gradient, [(0, 0, 0), (255, 255, 255)]).data
    assert analyze_banding(dithered) > 0.0
