# =============================================================================
# NetSmart -- Quality Classifier
# =============================================================================
#
# Latency -> weak/medium/strong, plus a rolling latency window used for
# the coordinator's average latency and jitter statistics.
# =============================================================================

from __future__ import annotations

import math
from collections import deque

from .config import QualityThresholds
from .constants import LATENCY_WINDOW_SIZE
from .types import NetworkQuality

_DEFAULT_THRESHOLDS = QualityThresholds()


def classify(
    latency_ms: float, thresholds: QualityThresholds = _DEFAULT_THRESHOLDS
) -> NetworkQuality:
    """Grade a latency measurement. Non-finite latency (timeout) is weak."""
    if not math.isfinite(latency_ms) or latency_ms >= thresholds.weak:
        return NetworkQuality.WEAK
    if latency_ms >= thresholds.medium:
        return NetworkQuality.MEDIUM
    return NetworkQuality.STRONG


class LatencyTracker:
    """Rolling window of latency samples.

    Timed-out probes (non-finite latency) are counted but kept out of the
    window so they do not poison the average.
    """

    def __init__(self, window_size: int = LATENCY_WINDOW_SIZE) -> None:
        self._latencies: deque[float] = deque(maxlen=window_size)
        self._timeouts = 0

    def record(self, latency_ms: float) -> None:
        if math.isfinite(latency_ms):
            self._latencies.append(latency_ms)
        else:
            self._timeouts += 1

    @property
    def sample_count(self) -> int:
        return len(self._latencies)

    @property
    def timeout_count(self) -> int:
        return self._timeouts

    @property
    def average_ms(self) -> float:
        if not self._latencies:
            return 0.0
        return round(sum(self._latencies) / len(self._latencies), 2)

    @property
    def jitter_ms(self) -> float:
        # Average absolute difference between consecutive samples
        if len(self._latencies) < 2:
            return 0.0
        lats = list(self._latencies)
        diffs = [abs(lats[i] - lats[i - 1]) for i in range(1, len(lats))]
        return round(sum(diffs) / len(diffs), 2)

    def reset(self) -> None:
        self._latencies.clear()
        self._timeouts = 0
