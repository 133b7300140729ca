"""Tests for TSS, intensity, heart rate TSS, ATL/CTL decay and running work."""

import math

import pytest

from ridemetrics.services.metrics_service import MetricsService


@pytest.fixture
def metrics():
    return MetricsService()


class TestTSS:
    def test_one_hour_at_ftp_is_100(self, metrics):
        assert metrics.calculate_tss(250, 3600, 250) == pytest.approx(100)

    def test_scales_with_intensity_squared(self, metrics):
        assert metrics.calculate_tss(200, 3600, 250) == pytest.approx(64)

    def test_invalid_ftp(self, metrics):
        with pytest.raises(ValueError):
            metrics.calculate_tss(200, 3600, 0)
        with pytest.raises(ValueError):
            metrics.calculate_intensity_factor(200, -1)

    def test_intensity_factor(self, metrics):
        assert metrics.calculate_intensity_factor(225, 250) == pytest.approx(0.9)


class TestHeartRateTSS:
    def test_threshold_hour(self, metrics):
        assert metrics.estimate_tss_from_hr(3600, 170, 170, 60) == pytest.approx(100)

    def test_capped_intensity(self, metrics):
        assert metrics.estimate_tss_from_hr(3600, 250, 170, 60) == pytest.approx(144)

    def test_invalid_inputs(self, metrics):
        assert metrics.estimate_tss_from_hr(0, 150, 170) == 0
        assert metrics.estimate_tss_from_hr(3600, 50, 170, 60) == 0
        with pytest.raises(ValueError):
            metrics.estimate_tss_from_hr(3600, 150, 60, 60)


class TestTrainingLoad:
    def test_single_day_decay(self, metrics):
        atl = metrics.calculate_atl([80], 0)
        ctl = metrics.calculate_ctl([80], 0)
        assert atl == pytest.approx(80 * (1 - math.exp(-1 / 7)))
        assert ctl == pytest.approx(80 * (1 - math.exp(-1 / 42)))

    def test_zero_days_drain(self, metrics):
        atl = metrics.calculate_atl([0, 0], 20)
        assert atl == pytest.approx(20 * math.exp(-2 / 7))

    def test_empty_list_returns_seed(self, metrics):
        assert metrics.calculate_ctl([], 12.5) == 12.5

    def test_custom_time_constants(self):
        metrics = MetricsService(atl_time_constant=1, ctl_time_constant=2)
        assert metrics.calculate_atl([100]) == pytest.approx(100 * (1 - math.exp(-1)))
        assert metrics.calculate_ctl([100]) == pytest.approx(100 * (1 - math.exp(-0.5)))

    def test_tsb(self, metrics):
        assert metrics.calculate_tsb(50, 70) == -20


class TestRunningWork:
    def test_running_cost(self, metrics):
        # 4.35 J/kg/m * 70kg * 1000m * 0.24
        assert metrics.running_work(70, 1000) == pytest.approx(73.08)

    def test_walking_cost(self, metrics):
        assert metrics.running_work(70, 1000, is_walking=True) == pytest.approx(33.6)


class TestTimeGaps:
    def test_cached_per_stream(self, metrics):
        times = list(range(50))
        assert metrics.time_gaps(times) is metrics.time_gaps(times)
        assert len(metrics.gaps_cache) == 1
