import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from threadstitch.utils.artistic_math import (
    MAX_ANGLE_VARIATION,
    add_artistic_variation,
    apply_thread_tension,
    artistic_stitch_length,
    atmospheric_factor,
    blend_colors,
    golden_ratio_spacing,
    sfumato_smoothing,
    thread_opacity,
)
from threadstitch.utils.color_model import (
    are_identical,
    are_similar,
    ciede2000,
    lab_distance,
    lab_to_rgb,
    rec709_luminance,
    rgb_to_lab,
    similarity_percentage,
    weighted_rgb_distance,
)
from threadstitch.utils.fields import OrientationField, sample, wrap_angle
from threadstitch.utils.result import (
    CancelToken,
    DimensionMismatchError,
    EmbroideryError,
    ErrorKind,
    Failure,
    ParameterError,
    ProcessingCancelled,
    Success,
    check_cancelled,
    guarded,
    map_result,
    then,
    unwrap,
)


def test_lab_round_trip_stays_within_two_levels():
    rng = np.random.default_rng(7)
    colors = rng.integers(0, 256, size=(300, 3))
    back = lab_to_rgb(rgb_to_lab(colors))
    assert np.max(np.abs(back - colors)) <= 2


def test_ciede2000_is_symmetric_and_zero_on_identity():
    rng = np.random.default_rng(3)
    a = rng.integers(0, 256, size=(50, 3))
    b = rng.integers(0, 256, size=(50, 3))
    np.testing.assert_allclose(ciede2000(a, b), ciede2000(b, a), rtol=1e-6, atol=1e-9)
    np.testing.assert_allclose(ciede2000(a, a), 0.0, atol=1e-9)
    assert ciede2000((0, 0, 0), (255, 255, 255)) > 90


def test_similarity_percentage_is_bounded():
    assert similarity_percentage((10, 20, 30), (10, 20, 30)) == pytest.approx(100.0)
    sims = similarity_percentage(np.array([[0, 0, 0], [255, 0, 0]]), np.array([[255, 255, 255], [0, 0, 255]]))
    assert np.all((sims >= 0.0) & (sims <= 100.0))


def test_rec709_luminance_range():
    assert rec709_luminance((0, 0, 0)) == pytest.approx(0.0)
    assert rec709_luminance((255, 255, 255)) == pytest.approx(1.0)


def test_artistic_variation_is_bounded_and_seeded():
    angles = np.zeros((10, 10))
    a = add_artistic_variation(angles, 0.5, np.random.default_rng(42))
    b = add_artistic_variation(angles, 0.5, np.random.default_rng(42))
    np.testing.assert_array_equal(a, b)
    assert np.all(np.abs(a) <= MAX_ANGLE_VARIATION * 0.5 + 1e-12)
    assert isinstance(add_artistic_variation(1.0, 0.2, np.random.default_rng(0)), float)


def test_thread_tension_moves_end_sideways_only_a_little():
    start, end = (0.0, 0.0), (10.0, 0.0)
    moved = apply_thread_tension(start, end, 1.0, np.random.default_rng(1))
    assert moved[0] == pytest.approx(10.0)
    assert abs(moved[1]) <= 10.0 * 0.05 * 0.5 + 1e-12
    assert apply_thread_tension(start, end, 0.0, np.random.default_rng(1)) == end


def test_stitch_length_and_atmosphere_helpers():
    assert 1.0 <= artistic_stitch_length(6.5, 1.0, 12.0, 1.0, 0.0) <= 12.0
    assert artistic_stitch_length(6.5, 1.0, 12.0, 0.0, 0.5) == pytest.approx(6.5)
    assert atmospheric_factor(0.0) == pytest.approx(1.0)
    assert atmospheric_factor(1.0) == pytest.approx(math.exp(-2.0))


def test_guarded_turns_errors_into_failures():
    @guarded("Demo stage")
    def stage(kind):
        if kind == "param":
            raise ParameterError("bad value")
        if kind == "dims":
            raise DimensionMismatchError("sizes differ")
        return 5

    assert stage("ok") == Success(5)
    failure = stage("param")
    assert isinstance(failure, Failure)
    assert failure.kind is ErrorKind.VALIDATION
    assert failure.error == "Demo stage failed: bad value"
    assert stage("dims").kind is ErrorKind.DIMENSION_MISMATCH


def test_result_helpers():
    assert map_result(Success(2), lambda v: v * 3) == Success(6)
    failed = map_result(Success(2), lambda v: unwrap(Failure("nope")))
    assert isinstance(failed, Failure) and failed.error.startswith("Mapping failed")
    assert then(Success(1), lambda v: Success(v + 1)) == Success(2)
    assert then(Failure("x"), lambda v: Success(v)) == Failure("x")

    with pytest.raises(EmbroideryError) as info:
        unwrap(Failure("too big", ErrorKind.RESOURCE_LIMIT))
    assert info.value.kind is ErrorKind.RESOURCE_LIMIT


def test_cancel_token():
    token = CancelToken()
    check_cancelled(token)
    check_cancelled(None)
    token.cancel()
    with pytest.raises(ProcessingCancelled):
        check_cancelled(token)


def test_color_distance_helpers():
    assert are_identical((120, 60, 30), (120, 60, 30))
    assert not are_identical((0, 0, 0), (255, 255, 255))
    assert are_similar((100, 100, 100), (101, 100, 100))
    assert not are_similar((255, 0, 0), (0, 0, 255))
    assert lab_distance(np.array([50.0, 0.0, 0.0]), np.array([53.0, 4.0, 0.0])) == pytest.approx(5.0)
    assert weighted_rgb_distance((0, 0, 0), (255, 255, 255)) == pytest.approx(255.0)


def test_sfumato_smoothing_and_thread_opacity():
    assert sfumato_smoothing(0.0, 0.0, 0.8) == 1.0
    assert sfumato_smoothing(0.0, 10.0, 0.8) == pytest.approx(0.8)
    assert sfumato_smoothing(10.0, 10.0, 0.8) == pytest.approx(0.0)
    assert thread_opacity(0.0, 0.0, 0.0) == pytest.approx(0.1)
    assert thread_opacity(0.9, 1.0, 1.0) == pytest.approx(1.0)
    assert thread_opacity(0.5, 0.0, 0.0) == pytest.approx(0.5)


def test_blend_and_golden_spacing():
    assert blend_colors((0, 0, 0), (200, 100, 50), 0.5) == (100, 50, 25)
    assert blend_colors((0, 0, 0), (200, 100, 50), 2.0) == (200, 100, 50)
    assert golden_ratio_spacing(10.0) == pytest.approx(10.0 * (0.8 + 0.2 / ((1 + math.sqrt(5)) / 2)))


def test_orientation_field_accessors_and_statistics():
    orientations = np.full((4, 6), np.pi / 2.0)
    coherences = np.full((4, 6), 0.75)
    field = OrientationField(6, 4, orientations, coherences)
    assert field.is_valid
    assert field.coherence_at(10, 10) == 0.0
    dx, dy = field.direction_vector_at(1, 1)
    assert dx == pytest.approx(0.0, abs=1e-12) and dy == pytest.approx(1.0)
    stats = field.statistics()
    assert stats["average_coherence"] == pytest.approx(0.75)
    assert abs(stats["dominant_orientation"]) == pytest.approx(np.pi / 2.0)
    assert stats["strong_structure_ratio"] == pytest.approx(1.0)


def test_sample_and_wrap_angle():
    values = np.arange(6, dtype=np.float64).reshape(2, 3)
    assert sample(values, 2, 1) == 5.0
    assert sample(values, -1, 0) == 0.0
    assert abs(float(wrap_angle(np.array(3.0 * np.pi)))) == pytest.approx(np.pi)
    assert float(wrap_angle(np.array(0.5))) == pytest.approx(0.5)
