import json
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from threadstitch.config import load_thread_catalog
from threadstitch.pattern_pipeline import EmbroideryPipeline, scaled_progress, smooth_region_mask, unique_thread_codes
from threadstitch.quantization.catalog import ThreadColor
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.slicer_core import SequenceAssembler
from threadstitch.techniques.sfumato import SfumatoGenerator
from threadstitch.techniques.silk_shading import SilkShadingGenerator
from threadstitch.utils.result import CancelToken, ErrorKind, Failure, Success


def _two_tone(size=48):
    img = np.full((size, size, 3), (235, 220, 120), dtype=np.uint8)
    img[:, : size // 2] = (20, 30, 110)
    return img


@pytest.fixture(scope="module")
def pipeline():
    return EmbroideryPipeline(catalogs=[load_thread_catalog()])


def test_pipeline_produces_valid_pattern(pipeline):
    params = EmbroideryParameters(color_limit=4)
    result = pipeline.process(_two_tone(), params)
    assert isinstance(result, Success)
    pattern = result.data
    assert (pattern.width, pattern.height) == (48, 48)
    assert pattern.total_stitches > 0
    assert SequenceAssembler.validate(pattern, params) == []
    assert all(seq.is_continuous and not seq.is_empty for seq in pattern.sequences)
    assert set(pattern.thread_order()) <= set(pattern.threads)

    record = pattern.to_dict()
    assert json.loads(json.dumps(record))["summary"]["total_stitches"] == pattern.total_stitches


def test_pipeline_progress_is_monotonic(pipeline):
    seen = []
    result = pipeline.process(
        _two_tone(), EmbroideryParameters(color_limit=4), progress_callback=lambda f, s: seen.append(f)
    )
    assert isinstance(result, Success)
    assert seen[-1] == pytest.approx(1.0)
    assert all(0.0 <= f <= 1.0 for f in seen)
    assert all(a <= b + 1e-12 for a, b in zip(seen, seen[1:]))


def test_pipeline_honours_cancellation(pipeline):
    token = CancelToken()
    token.cancel()
    result = pipeline.process(_two_tone(), EmbroideryParameters(), cancel_token=token)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.CANCELLED


def test_pipeline_rejects_invalid_parameters(pipeline):
    result = pipeline.process(_two_tone(), EmbroideryParameters(min_stitch_length=5.0, max_stitch_length=2.0))
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.VALIDATION
    assert result.error.startswith("Invalid parameters")


def test_pipeline_rejects_tiny_image(pipeline):
    result = pipeline.process(np.zeros((1, 1, 3), dtype=np.uint8), EmbroideryParameters())
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.RESOURCE_LIMIT


def test_pipeline_survives_failing_generator(pipeline, monkeypatch):
    monkeypatch.setattr(SilkShadingGenerator, "generate", lambda self, *args, **kwargs: Failure("boom"))
    result = pipeline.process(_two_tone(), EmbroideryParameters(color_limit=4))
    assert isinstance(result, Success)
    pattern = result.data
    assert pattern.total_stitches > 0
    assert all("_SF" in seq.thread_id for seq in pattern.sequences)


def test_pipeline_without_generators_is_empty(pipeline):
    params = EmbroideryParameters(color_limit=4, enable_silk_shading=False, enable_sfumato=False)
    result = pipeline.process(_two_tone(), params)
    assert isinstance(result, Success)
    assert result.data.sequence_count == 0
    assert result.data.thread_changes == 0


def test_flow_opacity_and_generators_use_dithered_image(monkeypatch):
    pipeline = EmbroideryPipeline(catalogs=[load_thread_catalog()])
    seen = {"generators": []}

    quantize = pipeline.quantizer.quantize
    analyze = pipeline.flow_analyzer.analyze
    generate_opacity = pipeline.opacity_controller.generate

    def record_quantize(*args, **kwargs):
        result = quantize(*args, **kwargs)
        seen["quantized"] = result.data.quantized_image
        return result

    def record_flow(image, *args, **kwargs):
        seen["flow"] = image
        return analyze(image, *args, **kwargs)

    def record_opacity(image, *args, **kwargs):
        seen["opacity"] = image
        return generate_opacity(image, *args, **kwargs)

    monkeypatch.setattr(pipeline.quantizer, "quantize", record_quantize)
    monkeypatch.setattr(pipeline.flow_analyzer, "analyze", record_flow)
    monkeypatch.setattr(pipeline.opacity_controller, "generate", record_opacity)
    for cls in (SilkShadingGenerator, SfumatoGenerator):
        original = cls.generate

        def record_generator(self, image, *args, _original=original, **kwargs):
            seen["generators"].append(image)
            return _original(self, image, *args, **kwargs)

        monkeypatch.setattr(cls, "generate", record_generator)

    ramp = np.repeat(np.linspace(0, 255, 64).astype(np.uint8)[None, :], 64, axis=0)
    result = pipeline.process(np.dstack([ramp] * 3), EmbroideryParameters(color_limit=4))
    assert isinstance(result, Success)

    dithered = seen["quantized"]
    np.testing.assert_array_equal(seen["flow"], dithered)
    np.testing.assert_array_equal(seen["opacity"], dithered)
    assert seen["generators"]
    for image in seen["generators"]:
        np.testing.assert_array_equal(image, dithered)


def test_shared_codes_from_different_catalogs_stay_apart():
    red = ThreadColor("Red", "001", 200, 20, 20, "Alpha")
    blue = ThreadColor("Blue", "001", 20, 20, 200, "Beta")
    green = ThreadColor("Green", "002", 20, 200, 20, "Alpha")

    renamed = unique_thread_codes([red, blue, green])
    assert [t.code for t in renamed] == ["Alpha:001", "Beta:001", "002"]
    assert [t.rgb for t in renamed] == [red.rgb, blue.rgb, green.rgb]
    assert unique_thread_codes([red, green]) == [red, green]


def test_scaled_progress_and_region_mask():
    seen = []
    forward = scaled_progress(lambda f, s: seen.append(f), 0.2, 0.4)
    forward(0.0, "a")
    forward(0.5, "b")
    forward(2.0, "c")
    assert seen == pytest.approx([0.2, 0.3, 0.4])
    assert scaled_progress(None, 0.0, 1.0) is None

    edges = np.zeros((9, 9), dtype=np.uint8)
    edges[4, 4] = 255
    mask = smooth_region_mask(edges)
    assert not mask[3:6, 3:6].any()
    assert mask[0, 0] and mask.sum() == 81 - 9


def test_command_line_writes_pattern(tmp_path):
    from PIL import Image

    from threadstitch.main import main

    source = tmp_path / "photo.png"
    Image.fromarray(_two_tone()).save(source)
    output = tmp_path / "pattern.json"

    code = main([str(source), "-o", str(output), "--catalog", "Generic 40wt", "--colors", "4", "--no-sfumato"])
    assert code == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["width"] == 48 and data["height"] == 48
    assert data["summary"]["total_stitches"] == sum(len(s["stitches"]) for s in data["sequences"])


def test_command_line_reports_bad_input(tmp_path):
    from threadstitch.main import main

    assert main([str(tmp_path / "missing.png"), "-o", str(tmp_path / "out.json")]) == 2
