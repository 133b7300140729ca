"""Tests for the ATL/CTL training load aggregator and its manager."""

import asyncio
import math
from datetime import date
from unittest.mock import AsyncMock

import pytest

from ridemetrics.models import Activity
from ridemetrics.services.training_load_service import (
    PendingActivity,
    TrainingLoadAggregator,
    TrainingLoadInternalError,
    TrainingLoadManager,
    day_range,
    update_training_loads,
)
from tests.conftest import DAY, T0

HOUR = 3600


def decay(value, tss, k):
    return value + (tss - value) * (1 - math.exp(-1 / k))


def loads(days, atl=0.0, ctl=0.0):
    """Expected (atl, ctl) after folding consecutive daily TSS values."""
    for tss in days:
        atl = decay(atl, tss, 7)
        ctl = decay(ctl, tss, 42)
    return atl, ctl


async def run_batches(aggregator, *batches):
    task = asyncio.ensure_future(aggregator.run())
    for batch in batches:
        aggregator.put_incoming(batch)
        aggregator.flush()
        await aggregator.wait_idle()
    # Flushing an empty queue ends the loop
    aggregator.flush()
    await task


def test_day_range_excludes_end():
    days = list(day_range(date(2024, 1, 30), date(2024, 2, 2)))
    assert days == [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
    assert list(day_range(date(2024, 1, 1), date(2024, 1, 1))) == []


@pytest.mark.asyncio
class TestTrainingLoadAggregation:
    async def test_same_day_activities_share_one_update(
        self, db, store, athlete, make_activity, test_settings
    ):
        a1 = make_activity(T0 + 8 * HOUR, tss=50)
        a2 = make_activity(T0 + 12 * HOUR, tss=30)
        await update_training_loads(athlete, [a1, a2], store, settings=test_settings)
        db.refresh(a1)
        db.refresh(a2)
        atl, ctl = loads([80])
        assert a1.training_atl == pytest.approx(atl)
        assert a1.training_ctl == pytest.approx(ctl)
        assert a1.training == a2.training

    async def test_gap_day_is_drained(self, db, store, athlete, make_activity, test_settings):
        make_activity(T0, tss=40, training={"atl": 20, "ctl": 10})
        d1 = make_activity(T0 + DAY, tss=100)
        d3 = make_activity(T0 + 3 * DAY, tss=50)
        await update_training_loads(athlete, [d1, d3], store, settings=test_settings)
        db.refresh(d1)
        db.refresh(d3)
        assert d1.training_atl == pytest.approx(loads([100], 20, 10)[0])
        atl, ctl = loads([100, 0, 50], 20, 10)
        assert d3.training_atl == pytest.approx(atl)
        assert d3.training_ctl == pytest.approx(ctl)

    async def test_gap_after_seed_is_drained(self, db, store, athlete, make_activity, test_settings):
        make_activity(T0, tss=40, training={"atl": 20, "ctl": 10})
        d3 = make_activity(T0 + 3 * DAY, tss=50)
        await update_training_loads(athlete, [d3], store, settings=test_settings)
        db.refresh(d3)
        atl, ctl = loads([0, 0, 50], 20, 10)
        assert d3.training_atl == pytest.approx(atl)
        assert d3.training_ctl == pytest.approx(ctl)

    async def test_earlier_days_without_record_are_absorbed(
        self, db, store, athlete, make_activity, test_settings
    ):
        make_activity(T0, tss=40, training={"atl": 20, "ctl": 10})
        d1 = make_activity(T0 + DAY, tss=40)
        d2 = make_activity(T0 + 2 * DAY, tss=60)
        await update_training_loads(athlete, [d2], store, settings=test_settings)
        db.refresh(d1)
        db.refresh(d2)
        assert d1.training_atl == pytest.approx(loads([40], 20, 10)[0])
        atl, ctl = loads([40, 60], 20, 10)
        assert d2.training_atl == pytest.approx(atl)
        assert d2.training_ctl == pytest.approx(ctl)

    async def test_earlier_same_day_activity_is_absorbed(
        self, db, store, athlete, make_activity, test_settings
    ):
        morning = make_activity(T0 + 7 * HOUR, tss=30, training={"atl": 1, "ctl": 1})
        evening = make_activity(T0 + 19 * HOUR, tss=70)
        await update_training_loads(athlete, [evening], store, settings=test_settings)
        db.refresh(morning)
        db.refresh(evening)
        atl, ctl = loads([100])
        assert morning.training_atl == pytest.approx(atl)
        assert evening.training_atl == pytest.approx(atl)
        assert evening.training_ctl == pytest.approx(ctl)

    async def test_equal_start_time_sibling_counted_once(
        self, db, store, athlete, make_activity, test_settings
    ):
        first = make_activity(T0 + 9 * HOUR, tss=30)
        second = make_activity(T0 + 9 * HOUR, tss=50)
        assert first.id < second.id
        await update_training_loads(athlete, [second], store, settings=test_settings)
        db.refresh(first)
        db.refresh(second)
        atl, ctl = loads([80])
        assert first.training_atl == pytest.approx(atl)
        assert second.training_atl == pytest.approx(atl)
        assert second.training_ctl == pytest.approx(ctl)

    async def test_later_activities_are_updated(self, db, store, athlete, make_activity, test_settings):
        d0 = make_activity(T0, tss=50)
        d1 = make_activity(T0 + DAY, tss=50, training={"atl": 99, "ctl": 99})
        await update_training_loads(athlete, [d0], store, settings=test_settings)
        db.refresh(d1)
        atl, ctl = loads([50, 50])
        assert d1.training_atl == pytest.approx(atl)
        assert d1.training_ctl == pytest.approx(ctl)

    async def test_heart_rate_tss_used_without_power(
        self, db, store, athlete, make_activity, test_settings
    ):
        a = make_activity(T0, hr_tss=60)
        await update_training_loads(athlete, [a], store, settings=test_settings)
        db.refresh(a)
        assert a.training_atl == pytest.approx(loads([60])[0])

    async def test_timezone_groups_by_local_day(self, db, store, athlete, make_activity, test_settings):
        athlete.timezone = "Europe/Berlin"
        db.commit()
        # 23:30 UTC is already the next day in Berlin
        a = make_activity(T0 + 23 * HOUR + 1800, tss=40)
        b = make_activity(T0 + DAY + 8 * HOUR, tss=40)
        await update_training_loads(athlete, [a, b], store, settings=test_settings)
        db.refresh(a)
        db.refresh(b)
        assert a.training == b.training
        assert a.training_atl == pytest.approx(loads([80])[0])


@pytest.mark.asyncio
class TestAggregatorLifecycle:
    async def test_unchanged_batch_is_not_rewritten(
        self, db, store, athlete, make_activity, test_settings
    ):
        a1 = make_activity(T0, tss=50)
        a2 = make_activity(T0 + DAY, tss=40)
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings)
        save = AsyncMock(wraps=store.save_models)
        store.save_models = save
        await run_batches(aggregator, [a1, a2])
        db.refresh(a2)
        first = a2.training
        assert save.await_count == 1
        assert aggregator.completed_with == {a1.id: 50, a2.id: 40}

        await run_batches(aggregator, [a1, a2])
        db.refresh(a2)
        assert save.await_count == 1
        assert a2.training == first

    async def test_changed_tss_is_recomputed(self, db, store, athlete, make_activity, test_settings):
        a = make_activity(T0, tss=50)
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings)
        await run_batches(aggregator, [a])
        a.tss = 80
        db.commit()
        await run_batches(aggregator, [a])
        db.refresh(a)
        assert a.training_atl == pytest.approx(loads([80])[0])
        assert aggregator.completed_with[a.id] == 80

    async def test_finished_snapshots(self, store, athlete, make_activity, test_settings):
        a = make_activity(T0, tss=50)
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings)
        await run_batches(aggregator, [a])
        await asyncio.wait_for(aggregator.wait(), 1)
        assert aggregator.size == 1
        batch = aggregator.get_batch(10)
        assert batch == [PendingActivity(id=a.id, ts=a.ts, tss=50)]
        assert aggregator.size == 0
        assert a.id not in aggregator.pending

    async def test_activity_beyond_forward_walk_is_fatal(
        self, db, store, athlete, make_activity, test_settings
    ):
        earlier = make_activity(T0 - DAY, tss=40)
        a = make_activity(T0, tss=50)
        b = make_activity(T0 + 30 * DAY, tss=50)
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings, clock=lambda: T0)
        with pytest.raises(TrainingLoadInternalError):
            await run_batches(aggregator, [a, b])
        db.refresh(earlier)
        db.refresh(a)
        # The earlier activity was loaded from the store and updated in memory
        assert earlier.training is None
        assert a.training is None
        assert aggregator.completed_with == {}

    async def test_sibling_search_returning_origin_is_fatal(
        self, db, store, athlete, make_activity, test_settings
    ):
        a = make_activity(T0, tss=50)
        later = make_activity(T0 + DAY, tss=40, training={"atl": 9, "ctl": 9})

        async def siblings(activity_id, direction="next"):
            yield await store.get(activity_id)

        store.siblings = siblings
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings)
        aggregator.put_incoming([a])
        aggregator.flush()
        with pytest.raises(TrainingLoadInternalError, match="sibling search"):
            await asyncio.wait_for(aggregator.run(), 1)
        db.refresh(a)
        db.refresh(later)
        assert a.training is None
        assert later.training == {"atl": 9, "ctl": 9}
        assert aggregator.completed_with == {}
        assert aggregator.size == 0

    async def test_cancel_before_commit_discards_batch(
        self, db, store, athlete, make_activity, test_settings
    ):
        a = make_activity(T0, tss=50)
        aggregator = TrainingLoadAggregator(athlete, store, settings=test_settings)
        real_keys = store.get_all_keys_for_athlete

        async def cancelling(*args, **kwargs):
            aggregator.cancel()
            return await real_keys(*args, **kwargs)

        store.get_all_keys_for_athlete = cancelling
        aggregator.put_incoming([a])
        aggregator.flush()
        await asyncio.wait_for(aggregator.run(), 1)
        db.refresh(a)
        assert a.training is None
        assert aggregator.completed_with == {}
        assert aggregator.size == 0


@pytest.mark.asyncio
class TestTrainingLoadManager:
    async def test_submit_flush_shutdown(self, session_factory, athlete, make_activity, test_settings):
        a = make_activity(T0, tss=50)
        manager = TrainingLoadManager(session_factory, settings=test_settings)
        manager.submit(athlete, [a])
        await asyncio.wait_for(manager.flush(athlete.id), 2)
        check = session_factory()
        try:
            stored = check.query(Activity).filter(Activity.id == a.id).one()
            assert stored.training_atl == pytest.approx(loads([50])[0])
        finally:
            check.close()
        await manager.shutdown()
        assert manager._tasks == {}

    async def test_flush_unknown_athlete_is_noop(self, session_factory, test_settings):
        manager = TrainingLoadManager(session_factory, settings=test_settings)
        await manager.flush(12345)
        await manager.shutdown()

    async def test_invalidate_forces_recompute(self, session_factory, athlete, make_activity, test_settings):
        a = make_activity(T0, tss=50)
        manager = TrainingLoadManager(session_factory, settings=test_settings)
        manager.submit(athlete, [a])
        await manager.flush(athlete.id)
        aggregator = manager._aggregators[athlete.id]
        assert aggregator.completed_with == {a.id: 50}
        manager.submit(athlete, [a], invalidate=True)
        assert a.id not in aggregator.completed_with
        await manager.flush(athlete.id)
        assert aggregator.completed_with == {a.id: 50}
        await manager.shutdown()
