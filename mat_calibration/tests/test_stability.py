"""Tests for dwell-based stability detection."""

from __future__ import annotations

import pytest

from mat_calibration.calibration.stability import DEFAULT_DWELL_MS, StabilityDetector


class TestObserve:
    def test_default_dwell(self) -> None:
        assert StabilityDetector().dwell_ms == DEFAULT_DWELL_MS == 1000.0

    def test_unstable_never_reports(self) -> None:
        det = StabilityDetector(1000.0)
        for t in range(0, 5000, 100):
            assert det.observe(False, float(t)) is False
        assert det.is_stable is False
        assert det.stable_since is None

    def test_reports_once_dwell_elapsed(self) -> None:
        det = StabilityDetector(1000.0)
        assert det.observe(True, 0.0) is False
        assert det.stable_since == 0.0
        assert det.observe(True, 999.0) is False
        assert det.observe(True, 1000.0) is True
        assert det.observe(True, 1500.0) is True

    def test_rising_edge_starts_the_streak(self) -> None:
        det = StabilityDetector(1000.0)
        det.observe(False, 0.0)
        det.observe(True, 250.0)
        assert det.stable_since == 250.0
        assert det.observe(True, 1249.0) is False
        assert det.observe(True, 1250.0) is True

    def test_falling_edge_clears_without_memory(self) -> None:
        det = StabilityDetector(1000.0)
        det.observe(True, 0.0)
        det.observe(True, 900.0)
        assert det.observe(False, 950.0) is False
        assert det.is_stable is False
        # New streak starts from scratch
        assert det.observe(True, 1000.0) is False
        assert det.observe(True, 1999.0) is False
        assert det.observe(True, 2000.0) is True

    def test_zero_dwell_reports_on_first_stable_call(self) -> None:
        det = StabilityDetector(0.0)
        assert det.observe(True, 42.0) is True

    def test_negative_dwell_rejected(self) -> None:
        with pytest.raises(ValueError, match="dwell_ms"):
            StabilityDetector(-1.0)


class TestProgress:
    def test_duration_and_progress(self) -> None:
        det = StabilityDetector(1000.0)
        assert det.stable_duration_ms(500.0) == 0.0
        assert det.progress(500.0) == 0.0

        det.observe(True, 100.0)
        assert det.stable_duration_ms(600.0) == pytest.approx(500.0)
        assert det.progress(600.0) == pytest.approx(0.5)
        assert det.progress(5000.0) == 1.0

    def test_progress_with_zero_dwell(self) -> None:
        det = StabilityDetector(0.0)
        assert det.progress(0.0) == 0.0
        det.observe(True, 0.0)
        assert det.progress(0.0) == 1.0

    def test_reset(self) -> None:
        det = StabilityDetector(1000.0)
        det.observe(True, 0.0)
        det.reset()
        assert det.is_stable is False
        assert det.stable_since is None
        assert det.observe(True, 1000.0) is False
