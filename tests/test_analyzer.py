import math
from unittest import mock

import pytest

from freeghost import analyzer as analyzer_module
from freeghost.analyzer import (
    MAX_PATTERNS_STORED,
    MIN_PATTERNS_REQUIRED,
    AnalysisError,
    BehaviorAnalyzer,
    BehaviorPattern,
    PatternType,
    calculate_similarity,
    normalize_metrics,
)
from freeghost.errors import NodeError


@pytest.fixture
def analyzer():
    return BehaviorAnalyzer(None)


def _fill(analyzer, metrics=(1.0, 2.0, 3.0, 4.0, 5.0), count=MIN_PATTERNS_REQUIRED):
    for _ in range(count):
        analyzer.add_pattern(list(metrics), PatternType.KEYBOARD_DYNAMICS)


def test_pattern_addition_and_verification(analyzer):
    _fill(analyzer)
    patterns = analyzer.patterns()
    assert len(patterns) == MIN_PATTERNS_REQUIRED
    assert analyzer.verify_behavior(patterns) is True


def test_single_recent_pattern_is_insufficient(analyzer):
    _fill(analyzer)
    analyzer.add_pattern([100.0, 200.0, 300.0, 400.0, 500.0], PatternType.KEYBOARD_DYNAMICS)
    recent = analyzer.patterns()[-1:]
    with pytest.raises(AnalysisError, match="Not enough patterns"):
        analyzer.verify_behavior(recent)


def test_anomalous_patterns_rejected(analyzer):
    _fill(analyzer)
    reversed_metrics = normalize_metrics([5.0, 4.0, 3.0, 2.0, 1.0])
    anomalous = [
        BehaviorPattern(PatternType.KEYBOARD_DYNAMICS, reversed_metrics)
        for _ in range(MIN_PATTERNS_REQUIRED)
    ]
    assert analyzer.verify_behavior(anomalous) is False


def test_scaled_metrics_normalise_to_same_shape(analyzer):
    _fill(analyzer)
    analyzer.add_pattern([100.0, 200.0, 300.0, 400.0, 500.0], PatternType.KEYBOARD_DYNAMICS)
    assert analyzer.verify_behavior(analyzer.patterns()) is True


def test_timing_attack_prevention(analyzer):
    old = [
        BehaviorPattern(PatternType.KEYBOARD_DYNAMICS, [1.0, 2.0, 3.0], timestamp=0, id=bytes(32))
        for _ in range(MIN_PATTERNS_REQUIRED)
    ]
    with pytest.raises(AnalysisError, match="Pattern too old"):
        analyzer.verify_behavior(old)
    with pytest.raises(AnalysisError):
        analyzer.verify_behavior(old[:1])


def test_overflow_prevention(analyzer):
    with pytest.raises(AnalysisError, match="Pattern too long"):
        analyzer.add_pattern([1.0] * 2000, PatternType.KEYBOARD_DYNAMICS)
    assert analyzer.patterns() == []


def test_maximum_metric_length_is_accepted(analyzer):
    pattern = analyzer.add_pattern([float(i) for i in range(1000)], PatternType.MOUSE_MOVEMENT)
    assert len(pattern.metrics) == 1000
    assert analyzer.patterns() == [pattern]


def test_empty_and_constant_metrics_rejected(analyzer):
    with pytest.raises(AnalysisError, match="Empty metrics"):
        analyzer.add_pattern([], PatternType.TOUCH_GESTURE)
    with pytest.raises(AnalysisError, match="No variance"):
        analyzer.add_pattern([2.0, 2.0, 2.0], PatternType.TOUCH_GESTURE)


def test_analysis_error_is_node_error():
    with pytest.raises(NodeError):
        normalize_metrics([])


def test_normalize_metrics_has_zero_mean_unit_deviation():
    result = normalize_metrics([1.0, 2.0, 3.0, 4.0, 5.0])
    mean = sum(result) / len(result)
    deviation = math.sqrt(sum((x - mean) ** 2 for x in result) / len(result))
    assert mean == pytest.approx(0.0, abs=1e-12)
    assert deviation == pytest.approx(1.0)
    assert result == sorted(result)


def test_calculate_similarity_identical_and_opposite():
    base = normalize_metrics([1.0, 2.0, 3.0])
    same = BehaviorPattern(PatternType.DEVICE_ORIENTATION, base)
    opposite = BehaviorPattern(PatternType.DEVICE_ORIENTATION, [-b for b in base])
    assert calculate_similarity([same], base) == pytest.approx(1.0)
    assert calculate_similarity([opposite], base) == pytest.approx(-1.0)
    assert calculate_similarity([same, opposite], base) == pytest.approx(0.0, abs=1e-12)


def test_calculate_similarity_errors():
    pattern = BehaviorPattern(PatternType.APP_USAGE_PATTERN, [1.0, 2.0])
    with pytest.raises(AnalysisError, match="Empty comparison data"):
        calculate_similarity([pattern], [])
    with pytest.raises(AnalysisError, match="Empty comparison data"):
        calculate_similarity([], [1.0])
    with pytest.raises(AnalysisError, match="dimension mismatch"):
        calculate_similarity([pattern], [1.0, 2.0, 3.0])
    zero = BehaviorPattern(PatternType.APP_USAGE_PATTERN, [0.0, 0.0])
    with pytest.raises(AnalysisError, match="Zero magnitude"):
        calculate_similarity([zero], [1.0, 2.0])


def test_baseline_empty_until_enough_patterns(analyzer):
    _fill(analyzer, count=MIN_PATTERNS_REQUIRED - 1)
    assert analyzer.baseline() == []
    fresh = analyzer.patterns() + [analyzer.patterns()[0]]
    with pytest.raises(AnalysisError, match="Empty comparison data"):
        analyzer.verify_behavior(fresh)
    analyzer.add_pattern([1.0, 2.0, 3.0, 4.0, 5.0], PatternType.KEYBOARD_DYNAMICS)
    assert analyzer.baseline() == pytest.approx(normalize_metrics([1.0, 2.0, 3.0, 4.0, 5.0]))


def test_auditor_receives_operations():
    events = []
    analyzer = BehaviorAnalyzer(lambda operation, details: events.append((operation, details)))
    _fill(analyzer)
    analyzer.verify_behavior(analyzer.patterns())
    operations = [op for op, _ in events]
    assert operations == ["BehaviorPatternAdded"] * MIN_PATTERNS_REQUIRED + ["BehaviorVerification"]
    assert events[0][1]["pattern_type"] is PatternType.KEYBOARD_DYNAMICS
    assert events[-1][1]["success"] is True


def test_pattern_ids_are_random(analyzer):
    _fill(analyzer)
    ids = {p.id for p in analyzer.patterns()}
    assert len(ids) == MIN_PATTERNS_REQUIRED
    assert all(len(i) == 32 for i in ids)


def test_old_patterns_are_dropped(analyzer):
    first = analyzer.add_pattern([1.0, 2.0, 3.0], PatternType.KEYBOARD_DYNAMICS)
    later = first.timestamp + 301
    with mock.patch.object(analyzer_module.time, "time", return_value=float(later)):
        second = analyzer.add_pattern([3.0, 2.0, 1.0], PatternType.KEYBOARD_DYNAMICS)
    assert analyzer.patterns() == [second]


def test_storage_is_bounded(analyzer):
    for _ in range(MAX_PATTERNS_STORED + 1):
        analyzer.add_pattern([1.0, 2.0, 3.0], PatternType.KEYBOARD_DYNAMICS)
    assert len(analyzer.patterns()) == MAX_PATTERNS_STORED


def test_pattern_type_accepts_value_string(analyzer):
    pattern = analyzer.add_pattern([1.0, 3.0], "MouseMovement")
    assert pattern.pattern_type is PatternType.MOUSE_MOVEMENT
    with pytest.raises(ValueError):
        analyzer.add_pattern([1.0, 3.0], "Unknown")