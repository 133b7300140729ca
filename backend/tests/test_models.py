"""Tests for athlete history lookups and activity sync bookkeeping."""

from datetime import date

import pytest

from ridemetrics.models import Activity, Athlete


class TestAthleteHistory:
    def test_ftp_falls_back_to_current(self):
        athlete = Athlete(ftp=240)
        assert athlete.get_ftp_at(1000) == 240

    def test_ftp_history_lookup(self):
        athlete = Athlete(ftp=300)
        athlete.set_ftp_at(250, 2000)
        athlete.set_ftp_at(200, 1000)
        athlete.set_ftp_at(300, 3000)
        assert [x["ts"] for x in athlete.ftp_history] == [1000, 2000, 3000]
        assert athlete.get_ftp_at(500) == 200  # predates history
        assert athlete.get_ftp_at(1000) == 200
        assert athlete.get_ftp_at(2500) == 250
        assert athlete.get_ftp_at(9999) == 300

    def test_set_replaces_same_ts(self):
        athlete = Athlete()
        athlete.set_weight_at(70, 1000)
        athlete.set_weight_at(71, 1000)
        assert athlete.weight_history == [{"ts": 1000, "value": 71}]
        assert athlete.get_weight_at(5000) == 71

    def test_no_weight(self):
        assert Athlete().get_weight_at(1000) is None


class TestActivity:
    def test_training_record(self):
        activity = Activity(ts=0)
        assert activity.training is None
        activity.set_training(10.5, 3.2)
        assert activity.training == {"atl": 10.5, "ctl": 3.2}

    def test_get_tss_prefers_power(self):
        assert Activity(tss=80, hr_tss=60).get_tss() == 80
        assert Activity(hr_tss=60).get_tss() == 60
        assert Activity().get_tss() is None

    def test_locale_day(self):
        # 2024-01-01T23:30:00Z
        activity = Activity(ts=1704151800)
        assert activity.get_locale_day("UTC") == date(2024, 1, 1)
        assert activity.get_locale_day("Europe/Berlin") == date(2024, 1, 2)
        assert activity.get_locale_day("America/New_York") == date(2024, 1, 1)


class TestSyncErrors:
    def test_error_counts_and_clear_keeps_count(self):
        activity = Activity(ts=0)
        activity.set_sync_error("local", ValueError("bad stream"))
        activity.set_sync_error("local", ValueError("still bad"))
        state = activity.sync_state["local"]
        assert state["errorCount"] == 2
        assert state["errorMessage"] == "still bad"
        assert activity.has_sync_error("local")
        activity.clear_sync_error("local")
        assert not activity.has_sync_error("local")
        assert activity.sync_state["local"]["errorCount"] == 2

    def test_backoff_grows_with_count(self):
        activity = Activity(ts=0)
        activity.set_sync_error("local", ValueError("x"))
        error_ts = activity.sync_state["local"]["errorTS"]
        assert activity.in_error_backoff("local", 60, now=error_ts + 30)
        assert not activity.in_error_backoff("local", 60, now=error_ts + 61)
        activity.set_sync_error("local", ValueError("y"))
        error_ts = activity.sync_state["local"]["errorTS"]
        assert activity.in_error_backoff("local", 60, now=error_ts + 100)
        assert not activity.in_error_backoff("local", 60, now=error_ts + 121)

    def test_name_required(self):
        with pytest.raises(TypeError):
            Activity(ts=0).set_sync_error("", ValueError("x"))

    def test_version(self):
        activity = Activity(ts=0)
        activity.set_sync_version("local", 1)
        assert activity.sync_state["local"]["version"] == 1
        assert not activity.in_error_backoff("local", 60)
