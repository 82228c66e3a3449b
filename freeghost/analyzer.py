"""Behavioural biometrics: stores recent interaction patterns and scores new ones."""

import math
import os
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from freeghost.errors import NodeError

MAX_PATTERN_WINDOW = 300
MIN_PATTERNS_REQUIRED = 5
MAX_PATTERNS_STORED = 1000
MAX_METRICS = 1000
ANOMALY_THRESHOLD = 0.85
PATTERN_ID_SIZE = 32


class AnalysisError(NodeError):
    prefix = "Analysis error"


class PatternType(Enum):
    KEYBOARD_DYNAMICS = "KeyboardDynamics"
    MOUSE_MOVEMENT = "MouseMovement"
    TOUCH_GESTURE = "TouchGesture"
    DEVICE_ORIENTATION = "DeviceOrientation"
    APP_USAGE_PATTERN = "AppUsagePattern"


def _now() -> int:
    return int(time.time())


def _random_id() -> bytes:
    return os.urandom(PATTERN_ID_SIZE)


@dataclass(frozen=True)
class BehaviorPattern:
    """One observed pattern; ``id`` is random so patterns cannot be correlated."""

    pattern_type: PatternType
    metrics: tuple[float, ...]
    timestamp: int = field(default_factory=_now)
    id: bytes = field(default_factory=_random_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metrics", tuple(float(m) for m in self.metrics))


def normalize_metrics(metrics) -> list[float]:
    """Z-score normalise ``metrics`` using the population standard deviation."""
    values = [float(m) for m in metrics]
    if not values:
        raise AnalysisError("Empty metrics")
    mean = sum(values) / len(values)
    std_dev = math.sqrt(sum((x - mean) ** 2 for x in values) / len(values))
    if std_dev == 0.0:
        raise AnalysisError("No variance in metrics")
    return [(x - mean) / std_dev for x in values]


def calculate_similarity(patterns, baseline) -> float:
    """Mean cosine similarity between each pattern's metrics and ``baseline``."""
    patterns = list(patterns)
    baseline = [float(b) for b in baseline]
    if not patterns or not baseline:
        raise AnalysisError("Empty comparison data")
    baseline_magnitude = math.sqrt(sum(b * b for b in baseline))
    total = 0.0
    for pattern in patterns:
        if len(pattern.metrics) != len(baseline):
            raise AnalysisError("Metric dimension mismatch")
        dot = sum(a * b for a, b in zip(pattern.metrics, baseline))
        magnitude = math.sqrt(sum(a * a for a in pattern.metrics))
        if magnitude == 0.0 or baseline_magnitude == 0.0:
            raise AnalysisError("Zero magnitude vector")
        total += dot / (magnitude * baseline_magnitude)
    return total / len(patterns)


def _average(patterns) -> list[float]:
    length = len(patterns[0].metrics)
    count = len(patterns)
    baseline = [0.0] * length
    for pattern in patterns:
        if len(pattern.metrics) > length:
            raise AnalysisError("Metric dimension mismatch")
        for position, metric in enumerate(pattern.metrics):
            baseline[position] += metric / count
    return baseline


def _is_expired(pattern: BehaviorPattern, now: int) -> bool:
    return max(0, now - pattern.timestamp) > MAX_PATTERN_WINDOW


class BehaviorAnalyzer:
    """Keeps a sliding window of normalised patterns and their average baseline.

    ``auditor``, when given, is called as ``auditor(operation, details)`` after
    every recorded pattern and every verification.
    """

    def __init__(self, auditor: Callable[[str, dict], object] | None = None) -> None:
        self._auditor = auditor
        self._lock = threading.Lock()
        self._patterns: deque[BehaviorPattern] = deque()
        self._baseline: list[float] = []

    def _audit(self, operation: str, details: dict) -> None:
        if self._auditor is not None:
            self._auditor(operation, details)

    def add_pattern(self, raw_metrics, pattern_type) -> BehaviorPattern:
        """Normalise and store a pattern, refreshing the baseline once enough exist."""
        values = [float(m) for m in raw_metrics]
        if len(values) > MAX_METRICS:
            raise AnalysisError("Pattern too long")
        pattern_type = PatternType(pattern_type)
        now = _now()
        pattern = BehaviorPattern(pattern_type, normalize_metrics(values), timestamp=now)

        with self._lock:
            patterns = deque(self._patterns)
            while patterns and _is_expired(patterns[0], now):
                patterns.popleft()
            if len(patterns) >= MAX_PATTERNS_STORED:
                patterns.popleft()
            patterns.append(pattern)
            baseline = _average(patterns) if len(patterns) >= MIN_PATTERNS_REQUIRED else self._baseline
            self._patterns = patterns
            self._baseline = baseline

        self._audit(
            "BehaviorPatternAdded",
            {"pattern_id": uuid.uuid4(), "pattern_type": pattern_type, "status": "Success"},
        )
        return pattern

    def verify_behavior(self, recent_patterns) -> bool:
        """Whether ``recent_patterns`` are similar enough to the stored baseline."""
        patterns = list(recent_patterns)
        if len(patterns) < MIN_PATTERNS_REQUIRED:
            raise AnalysisError("Not enough patterns")
        now = _now()
        if any(_is_expired(p, now) for p in patterns):
            raise AnalysisError("Pattern too old")
        with self._lock:
            baseline = list(self._baseline)
        accepted = calculate_similarity(patterns, baseline) >= ANOMALY_THRESHOLD
        self._audit("BehaviorVerification", {"success": accepted, "status": "Success"})
        return accepted

    def patterns(self) -> list[BehaviorPattern]:
        with self._lock:
            return list(self._patterns)

    def baseline(self) -> list[float]:
        with self._lock:
            return list(self._baseline)