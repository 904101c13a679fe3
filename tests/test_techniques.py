import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from threadstitch.quantization.catalog import ThreadColor
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.techniques.opacity import AdaptiveOpacityController
from threadstitch.techniques.sfumato import (
    SfumatoGenerator,
    SfumatoParameters,
    build_layers,
    layer_anchors,
    layer_opacity,
)
from threadstitch.techniques.silk_shading import SilkShadingGenerator, base_spacing, direction_accuracy
from threadstitch.techniques.thread_flow import ThreadFlowAnalyzer, ThreadFlowParameters
from threadstitch.utils.fields import OrientationField
from threadstitch.utils.result import ErrorKind, Failure, Success

NAVY = ThreadColor("Navy", "N1", 20, 30, 90, "Test")
CREAM = ThreadColor("Cream", "C1", 245, 235, 200, "Test")


def _horizontal_field(width, height, coherence=0.8):
    return OrientationField(
        width,
        height,
        np.zeros((height, width), dtype=np.float64),
        np.full((height, width), coherence, dtype=np.float64),
    )


def _two_tone(size=48):
    img = np.full((size, size, 3), (240, 230, 200), dtype=np.uint8)
    img[:, : size // 2] = (25, 35, 90)
    return img


def _gradient(size=48):
    ramp = np.linspace(20, 235, size).astype(np.uint8)
    return np.repeat(np.repeat(ramp[None, :, None], size, axis=0), 3, axis=2)


def _flow_and_opacity(image):
    height, width = image.shape[:2]
    flow = ThreadFlowAnalyzer().analyze(image, _horizontal_field(width, height)).data
    opacity = AdaptiveOpacityController().generate(image, flow).data
    return flow, opacity


def test_thread_flow_field_properties():
    image = _two_tone()
    result = ThreadFlowAnalyzer().analyze(image, _horizontal_field(48, 48))
    assert isinstance(result, Success)
    flow = result.data
    assert (flow.width, flow.height) == (48, 48)
    np.testing.assert_allclose(flow.secondary_directions - flow.primary_directions, np.pi / 2.0)
    assert flow.flow_coherence.min() >= 0.0 and flow.flow_coherence.max() <= 1.0
    assert flow.texture_complexity.min() >= 0.0 and flow.texture_complexity.max() <= 1.0
    assert 0.0 <= flow.quality_score <= 100.0
    # flat input with small variation stays close to horizontal
    assert abs(flow.primary_direction_at(10, 10)) < 0.5


def test_thread_flow_is_seeded():
    image = _two_tone()
    a = ThreadFlowAnalyzer().analyze(image, _horizontal_field(48, 48)).data
    b = ThreadFlowAnalyzer().analyze(image, _horizontal_field(48, 48)).data
    np.testing.assert_array_equal(a.primary_directions, b.primary_directions)


def test_thread_flow_rejects_mismatched_field():
    result = ThreadFlowAnalyzer().analyze(_two_tone(), _horizontal_field(40, 48))
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.DIMENSION_MISMATCH
    assert "dimensions must match" in result.error


def test_thread_flow_rejects_bad_parameters():
    result = ThreadFlowAnalyzer().analyze(_two_tone(), _horizontal_field(48, 48), ThreadFlowParameters(smoothing=2.0))
    assert isinstance(result, Failure) and result.kind is ErrorKind.VALIDATION


def test_opacity_map_is_bounded_and_darker_is_denser():
    image = _two_tone()
    _, opacity = _flow_and_opacity(image)
    assert opacity.opacity_values.min() >= 0.0 and opacity.opacity_values.max() <= 1.0
    assert opacity.depth_map.shape == (48, 48)
    dark = opacity.opacity_values[:, :20].mean()
    light = opacity.opacity_values[:, 28:].mean()
    assert dark > light
    assert 0.0 <= opacity.average_opacity <= 1.0


def test_silk_shading_on_dark_region():
    image = _two_tone()
    flow, opacity = _flow_and_opacity(image)
    mask = np.zeros((48, 48), dtype=bool)
    mask[:, :24] = True
    params = EmbroideryParameters()

    result = SilkShadingGenerator().generate(image, flow, opacity, NAVY, mask, params)
    assert isinstance(result, Success)
    silk = result.data
    assert silk.total_stitches > 0
    assert silk.total_stitches == sum(seq.stitch_count for seq in silk.sequences)
    for seq in silk.sequences:
        assert seq.thread_id == "N1"
        assert seq.is_continuous
        for stitch in seq.stitches:
            assert stitch.is_valid(params.min_stitch_length, params.max_stitch_length)
    for score in (silk.coverage_percentage, silk.direction_accuracy, silk.artistic_quality):
        assert 0.0 <= score <= 100.0


def test_silk_shading_is_deterministic():
    image = _two_tone()
    flow, opacity = _flow_and_opacity(image)
    mask = np.ones((48, 48), dtype=bool)
    a = SilkShadingGenerator().generate(image, flow, opacity, NAVY, mask, EmbroideryParameters()).data
    b = SilkShadingGenerator().generate(image, flow, opacity, NAVY, mask, EmbroideryParameters()).data
    assert a.sequences == b.sequences


def test_silk_shading_rejects_bad_mask_and_parameters():
    image = _two_tone()
    flow, opacity = _flow_and_opacity(image)
    bad_mask = SilkShadingGenerator().generate(image, flow, opacity, NAVY, np.ones((10, 10), bool), EmbroideryParameters())
    assert isinstance(bad_mask, Failure) and bad_mask.kind is ErrorKind.DIMENSION_MISMATCH

    bad_params = SilkShadingGenerator().generate(
        image, flow, opacity, NAVY, np.ones((48, 48), bool), EmbroideryParameters(density=5.0)
    )
    assert isinstance(bad_params, Failure) and bad_params.kind is ErrorKind.VALIDATION


def test_silk_helpers():
    assert base_spacing(0.7) == pytest.approx(8.0 / 0.7)
    assert base_spacing(0.1) == 16.0
    assert direction_accuracy([], None) == 0.0


def test_sfumato_layers_fade_from_base_to_highlight():
    layers = build_layers(NAVY, CREAM, 5, 0.7)
    assert [layer.thread.code for layer in layers] == [f"N1_SF{i}" for i in range(5)]
    assert layers[0].thread.rgb == NAVY.rgb
    assert layers[-1].thread.rgb == CREAM.rgb
    assert layers[0].opacity == pytest.approx(0.8)
    assert layers[-1].opacity == pytest.approx(0.1)
    assert layer_opacity(0.5) == pytest.approx(0.45)


def test_sfumato_anchor_rules_cover_every_layer():
    for index in range(4):
        anchors = layer_anchors(16, 16, 4, index)
        assert anchors
        assert all(0 <= x < 16 and 0 <= y < 16 for x, y in anchors)
    assert layer_anchors(16, 16, 4, 0)[0] == (0, 0)
    assert layer_anchors(16, 16, 4, 1)[0] == (2, 2)


def test_sfumato_generates_one_sequence_per_layer():
    image = _gradient()
    flow, opacity = _flow_and_opacity(image)
    mask = np.ones((48, 48), dtype=bool)
    params = EmbroideryParameters()

    result = SfumatoGenerator(CREAM, SfumatoParameters(layer_count=5)).generate(
        image, flow, opacity, NAVY, mask, params
    )
    assert isinstance(result, Success)
    sfumato = result.data
    assert sfumato.layer_count == 5
    assert len(sfumato.sequences) == 5
    opacities = [seq.opacity for seq in sfumato.sequences]
    assert all(a >= b for a, b in zip(opacities, opacities[1:]))
    assert sfumato.sequences[0].stitch_count > 0
    for seq in sfumato.sequences:
        assert seq.is_continuous
        for stitch in seq.stitches:
            assert stitch.is_valid(params.min_stitch_length, params.max_stitch_length)
    for score in (sfumato.gradient_smoothness, sfumato.layer_blending, sfumato.artistic_quality):
        assert 0.0 <= score <= 100.0


@pytest.mark.parametrize("count", [1, 11])
def test_sfumato_rejects_layer_count(count):
    image = _gradient()
    flow, opacity = _flow_and_opacity(image)
    result = SfumatoGenerator(CREAM, SfumatoParameters(layer_count=count)).generate(
        image, flow, opacity, NAVY, np.ones((48, 48), bool), EmbroideryParameters()
    )
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.VALIDATION
    assert "between 2 and 10" in result.error
