"""Tests for the durable task store and its engine mirroring."""

import json

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from chatmem.models.core import ScheduledTask, TaskKind
from chatmem.services.recurring_engine import RecurringTriggerEngine
from chatmem.services.task_store import ONESHOT_DATA_KEY, ONESHOT_INDEX_KEY, PERIODIC_DATA_KEY, TaskStore
from chatmem.utils.redis_client import StoreUnavailableError
from chatmem.utils.schedule_expr import InvalidScheduleError

from tests.conftest import NOW


def once_task(**overrides) -> ScheduledTask:
    fields = dict(kind=TaskKind.ONCE, content='喝水', group_id=100, user_id=42, target_at=NOW + 600)
    fields.update(overrides)
    return ScheduledTask(**fields)


def periodic_task(**overrides) -> ScheduledTask:
    fields = dict(kind=TaskKind.PERIODIC, content='打卡', group_id=100, user_id=42, time_expr='0 0 9 * * *')
    fields.update(overrides)
    return ScheduledTask(**fields)


class TestAddTask:
    """Adding one-shot and periodic tasks."""

    def test_assigns_id(self, task_store):
        """An empty id is replaced by a generated task id."""
        task = task_store.add_task(once_task())
        assert task.id.startswith('task_')
        assert task.id.endswith('_42')

    def test_keeps_caller_id(self, task_store):
        task = task_store.add_task(once_task(id='reminder-1'))
        assert task.id == 'reminder-1'

    def test_once_split_between_index_and_content(self, task_store, redis):
        """The index holds only the id scored by target time; the payload lives in the content map."""
        task = task_store.add_task(once_task())

        assert redis.zsets[ONESHOT_INDEX_KEY] == {task.id: float(NOW + 600)}
        stored = json.loads(redis.hashes[ONESHOT_DATA_KEY][task.id])
        assert stored == {
            'id': task.id,
            'type': 'once',
            'content': '喝水',
            'group_id': 100,
            'user_id': 42,
            'time_expr': '',
            'target_at': NOW + 600
        }

    def test_once_without_target_rejected(self, task_store, redis):
        with pytest.raises(InvalidScheduleError):
            task_store.add_task(once_task(target_at=0))
        assert not redis.hashes.get(ONESHOT_DATA_KEY)

    def test_periodic_registered_and_persisted(self, task_store, engine, redis):
        task = task_store.add_task(periodic_task())

        assert engine.has(task.id)
        assert ScheduledTask.from_json(redis.hashes[PERIODIC_DATA_KEY][task.id]) == task

    def test_invalid_periodic_expression_rejected(self, task_store, engine, redis):
        """Nothing is registered or persisted for a malformed expression."""
        with pytest.raises(InvalidScheduleError):
            task_store.add_task(periodic_task(time_expr='every day at nine'))

        assert engine.task_ids() == []
        assert not redis.hashes.get(PERIODIC_DATA_KEY)

    def test_periodic_rolled_back_when_store_unavailable(self, task_store, engine, redis):
        """A periodic task the store could not persist does not stay registered."""
        redis.available = False
        with pytest.raises(StoreUnavailableError):
            task_store.add_task(periodic_task())
        assert engine.task_ids() == []

    def test_failed_replacement_keeps_previous_entry(self, task_store, engine, redis):
        """Re-adding an existing id during an outage leaves the earlier schedule running."""
        task_store.add_task(periodic_task(id='daily'))
        redis.available = False

        with pytest.raises(StoreUnavailableError):
            task_store.add_task(periodic_task(id='daily', time_expr='0 30 18 * * *', content='下班'))

        assert engine.task_ids() == ['daily']
        kept = engine.registered_task('daily')
        assert (kept.time_expr, kept.content) == ('0 0 9 * * *', '打卡')

    def test_once_fails_closed(self, task_store, redis):
        redis.available = False
        with pytest.raises(StoreUnavailableError):
            task_store.add_task(once_task())


class TestListTasks:
    """Listing with group and user filters."""

    def test_added_task_is_listed(self, task_store):
        task = task_store.add_task(once_task())
        assert task_store.list_tasks(100, 42) == [task]

    def test_filters(self, task_store):
        a = task_store.add_task(once_task(id='a', group_id=100, user_id=1))
        b = task_store.add_task(periodic_task(id='b', group_id=100, user_id=2))
        c = task_store.add_task(once_task(id='c', group_id=200, user_id=1))

        assert {t.id for t in task_store.list_tasks()} == {a.id, b.id, c.id}
        assert {t.id for t in task_store.list_tasks(group_id=100)} == {a.id, b.id}
        assert {t.id for t in task_store.list_tasks(user_id=1)} == {a.id, c.id}
        assert {t.id for t in task_store.list_tasks(100, 2)} == {b.id}

    def test_malformed_entries_skipped(self, task_store, redis):
        task = task_store.add_task(once_task())
        redis.hashes[ONESHOT_DATA_KEY]['broken'] = '{not json'

        assert task_store.list_tasks() == [task]

    def test_fails_closed(self, task_store, redis):
        """An unreachable store is an error, not an empty list."""
        task_store.add_task(once_task())
        redis.available = False
        with pytest.raises(StoreUnavailableError):
            task_store.list_tasks()


class TestRemoveTask:
    """Removal of periodic and one-shot tasks."""

    def test_remove_periodic(self, task_store, engine, redis):
        task = task_store.add_task(periodic_task())
        task_store.remove_task(task.id)

        assert not engine.has(task.id)
        assert task.id not in redis.hashes[PERIODIC_DATA_KEY]
        assert task_store.list_tasks() == []

    def test_remove_once(self, task_store, redis):
        task = task_store.add_task(once_task())
        task_store.remove_task(task.id)

        assert task.id not in redis.zsets[ONESHOT_INDEX_KEY]
        assert task.id not in redis.hashes[ONESHOT_DATA_KEY]
        assert task_store.list_tasks() == []

    def test_remove_twice_is_noop(self, task_store, redis):
        """The second removal neither raises nor touches other tasks."""
        keep = task_store.add_task(once_task(id='keep'))
        gone = task_store.add_task(periodic_task(id='gone'))

        task_store.remove_task(gone.id)
        task_store.remove_task(gone.id)

        assert task_store.list_tasks() == [keep]

    def test_remove_unknown_id(self, task_store):
        task_store.remove_task('does-not-exist')

    def test_remove_unregistered_periodic_entry(self, task_store, redis):
        """Entries the engine never loaded are still deleted from the store."""
        redis.hset(PERIODIC_DATA_KEY, 'orphan', periodic_task(id='orphan').to_json())
        task_store.remove_task('orphan')
        assert 'orphan' not in redis.hashes[PERIODIC_DATA_KEY]

    def test_fails_closed(self, task_store, redis):
        task = task_store.add_task(once_task())
        redis.available = False
        with pytest.raises(StoreUnavailableError):
            task_store.remove_task(task.id)


class TestReloadPeriodicTasks:
    """Recovery of periodic tasks on a fresh process."""

    def fresh_store(self, redis, notifier, scheduler_config, clock):
        engine = RecurringTriggerEngine(notifier, scheduler_config, scheduler=BackgroundScheduler(timezone='UTC'))
        return TaskStore(redis, engine, clock=clock), engine

    def test_restart_restores_same_schedule(self, task_store, redis, notifier, scheduler_config, clock):
        """After a restart the engine fires the same content to the same destination."""
        task = task_store.add_task(periodic_task())

        store, engine = self.fresh_store(redis, notifier, scheduler_config, clock)
        assert store.reload_periodic_tasks() == 1
        assert engine.task_ids() == [task.id]

        job = engine.scheduler.get_job(task.id)
        assert str(job.trigger) == str(task_store.engine.scheduler.get_job(task.id).trigger)
        job.func(*job.args)
        assert notifier.deliveries == [(100, 42, '【周期提醒】打卡')]

    def test_removed_task_not_restored(self, task_store, redis, notifier, scheduler_config, clock):
        task = task_store.add_task(periodic_task())
        task_store.remove_task(task.id)

        store, engine = self.fresh_store(redis, notifier, scheduler_config, clock)
        assert store.reload_periodic_tasks() == 0
        assert engine.task_ids() == []

    def test_bad_entries_skipped(self, task_store, redis, notifier, scheduler_config, clock):
        """Malformed JSON and unschedulable expressions do not abort the reload."""
        good = task_store.add_task(periodic_task(id='good'))
        redis.hashes[PERIODIC_DATA_KEY]['garbled'] = '{"id": '
        redis.hashes[PERIODIC_DATA_KEY]['bad-expr'] = periodic_task(id='bad-expr', time_expr='0 0 99 * * *').to_json()

        store, engine = self.fresh_store(redis, notifier, scheduler_config, clock)
        assert store.reload_periodic_tasks() == 1
        assert engine.task_ids() == [good.id]

    def test_reload_rebuilds_registry(self, task_store, engine):
        """Reloading twice leaves exactly one entry per task."""
        task = task_store.add_task(periodic_task())
        task_store.reload_periodic_tasks()
        task_store.reload_periodic_tasks()
        assert engine.task_ids() == [task.id]

    def test_once_tasks_need_no_reload(self, task_store, redis, notifier, scheduler_config, clock):
        task = task_store.add_task(once_task())
        store, _ = self.fresh_store(redis, notifier, scheduler_config, clock)
        assert store.list_tasks() == [task]
        assert store.due_task_ids(NOW + 600) == [task.id]
