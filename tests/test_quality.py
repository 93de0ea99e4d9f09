"""Tests for quality classification and latency tracking."""

import math

from netsmart.config import QualityThresholds
from netsmart.quality import LatencyTracker, classify
from netsmart.types import NetworkQuality


class TestClassify:
    def test_default_thresholds(self):
        assert classify(50) == NetworkQuality.STRONG
        assert classify(500) == NetworkQuality.MEDIUM
        assert classify(1500) == NetworkQuality.WEAK

    def test_infinite_latency_is_weak(self):
        assert classify(math.inf) == NetworkQuality.WEAK

    def test_nan_is_weak(self):
        assert classify(math.nan) == NetworkQuality.WEAK

    def test_boundaries_inclusive(self):
        assert classify(300) == NetworkQuality.MEDIUM
        assert classify(1000) == NetworkQuality.WEAK
        assert classify(299.9) == NetworkQuality.STRONG

    def test_custom_thresholds(self):
        thresholds = QualityThresholds(weak=200, medium=100)
        assert classify(150, thresholds) == NetworkQuality.MEDIUM
        assert classify(250, thresholds) == NetworkQuality.WEAK


class TestLatencyTracker:
    def test_empty(self):
        tracker = LatencyTracker()
        assert tracker.average_ms == 0.0
        assert tracker.jitter_ms == 0.0

    def test_average_and_jitter(self):
        tracker = LatencyTracker()
        for lat in [10.0, 100.0, 10.0, 100.0]:
            tracker.record(lat)
        assert tracker.average_ms == 55.0
        assert tracker.jitter_ms == 90.0

    def test_timeouts_kept_out_of_window(self):
        tracker = LatencyTracker()
        tracker.record(40.0)
        tracker.record(math.inf)
        tracker.record(60.0)
        assert tracker.sample_count == 2
        assert tracker.timeout_count == 1
        assert tracker.average_ms == 50.0

    def test_window_bounded(self):
        tracker = LatencyTracker(window_size=3)
        for lat in [1000.0, 10.0, 10.0, 10.0]:
            tracker.record(lat)
        assert tracker.sample_count == 3
        assert tracker.average_ms == 10.0

    def test_reset(self):
        tracker = LatencyTracker()
        tracker.record(10.0)
        tracker.record(math.inf)
        tracker.reset()
        assert tracker.sample_count == 0
        assert tracker.timeout_count == 0
