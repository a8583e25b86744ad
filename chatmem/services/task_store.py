"""
Task Store: durable one-shot and periodic notification tasks kept in Redis.

One-shot tasks are split across two structures: a sorted set holding only
task ids scored by their target time, and a hash holding the task payload by
id. The poller reads due ids from the index and then fetches the payload; a
missing payload means the task was removed meanwhile and the index entry is
simply dropped. Either structure may therefore be cleaned first without a
task ever firing with no content.
"""

import time
from typing import Callable, List, Optional

from ..models.core import ScheduledTask, TaskKind
from ..utils.logging_config import get_logger
from ..utils.redis_client import RedisClient, StoreUnavailableError
from ..utils.schedule_expr import InvalidScheduleError
from .recurring_engine import RecurringTriggerEngine

logger = get_logger(__name__)

ONESHOT_INDEX_KEY = 'tasks:oneshot:schedule'  # task id -> target_at
ONESHOT_DATA_KEY = 'tasks:oneshot:data'  # task id -> task JSON
PERIODIC_DATA_KEY = 'tasks:periodic:data'  # task id -> task JSON


def generate_task_id(prefix: str, user_id: int) -> str:
    return f'{prefix}{time.time_ns()}_{user_id}'


class TaskStore:
    """Single writer of task state; mirrors periodic tasks into the recurring engine."""

    def __init__(self, redis: RedisClient, engine: RecurringTriggerEngine, clock: Callable[[], float] = time.time):
        self.redis = redis
        self.engine = engine
        self.clock = clock

    def add_task(self, task: ScheduledTask) -> ScheduledTask:
        """Persist and schedule a task.

        Args:
            task: Task to add; an id is assigned when empty

        Returns:
            The stored task, carrying its id

        Raises:
            InvalidScheduleError: If the task's schedule is missing or malformed
            StoreUnavailableError: If Redis cannot be reached
        """
        if not task.id:
            task.id = generate_task_id('task_', task.user_id)

        if task.kind == TaskKind.PERIODIC:
            self._add_periodic(task)
        elif task.kind == TaskKind.ONCE:
            self._add_oneshot(task)
        else:
            raise InvalidScheduleError(f'Unknown task kind: {task.kind!r}')

        logger.info(f'Added {task.kind.value} task {task.id} for group={task.group_id} user={task.user_id}')
        return task

    def _add_periodic(self, task: ScheduledTask) -> None:
        previous = self.engine.registered_task(task.id)
        self.engine.register(task)
        try:
            self.redis.hset(PERIODIC_DATA_KEY, task.id, task.to_json())
        except StoreUnavailableError:
            # The engine keeps whatever was durable before this call
            if previous is not None:
                self.engine.register(previous)
            else:
                self.engine.unregister(task.id)
            raise

    def _add_oneshot(self, task: ScheduledTask) -> None:
        if task.target_at <= 0:
            raise InvalidScheduleError(f'One-shot task {task.id} has no target time')

        # Content before index, so the index never points at a task that was never written
        self.redis.hset(ONESHOT_DATA_KEY, task.id, task.to_json())
        self.redis.zadd(ONESHOT_INDEX_KEY, task.id, float(task.target_at))

    def list_tasks(self, group_id: int = 0, user_id: int = 0) -> List[ScheduledTask]:
        """List one-shot and periodic tasks matching the filters; 0 matches everything.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        tasks = []
        for key in (ONESHOT_DATA_KEY, PERIODIC_DATA_KEY):
            for payload in self.redis.hvals(key):
                try:
                    task = ScheduledTask.from_json(payload)
                except ValueError as e:
                    logger.warning(f'Skipping malformed task in {key}: {e}')
                    continue
                if (group_id == 0 or task.group_id == group_id) and (user_id == 0 or task.user_id == user_id):
                    tasks.append(task)
        return tasks

    def remove_task(self, task_id: str) -> None:
        """Remove a task; removing an unknown id is a no-op.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        if self.engine.unregister(task_id):
            self.redis.hdel(PERIODIC_DATA_KEY, task_id)
            logger.info(f'Removed periodic task {task_id}')
            return

        removed = self.redis.zrem(ONESHOT_INDEX_KEY, task_id)
        removed += self.redis.hdel(ONESHOT_DATA_KEY, task_id)
        # Periodic entries that failed to register on reload are only known to Redis
        removed += self.redis.hdel(PERIODIC_DATA_KEY, task_id)
        if removed:
            logger.info(f'Removed task {task_id}')
        else:
            logger.debug(f'Task {task_id} not found, nothing to remove')

    def reload_periodic_tasks(self) -> int:
        """Rebuild the recurring engine from persisted periodic tasks.

        Malformed or unschedulable entries are logged and skipped.

        Returns:
            Number of tasks registered

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        persisted = self.redis.hgetall(PERIODIC_DATA_KEY)

        self.engine.clear()
        loaded = 0
        for task_id, payload in persisted.items():
            try:
                task = ScheduledTask.from_json(payload)
                if task.id != task_id:
                    raise ValueError(f'payload id {task.id!r} does not match key')
                self.engine.register(task)
                loaded += 1
                logger.debug(f'Reloaded periodic task {task_id}')
            except (ValueError, InvalidScheduleError) as e:
                logger.error(f'Failed to reload periodic task {task_id}: {e}')

        logger.info(f'Reloaded {loaded}/{len(persisted)} periodic tasks')
        return loaded

    def due_task_ids(self, now: Optional[float] = None) -> List[str]:
        """Ids of one-shot tasks whose target time is at or before now."""
        now = self.clock() if now is None else now
        return self.redis.zrangebyscore(ONESHOT_INDEX_KEY, 0, int(now))

    def get_oneshot_payload(self, task_id: str) -> Optional[str]:
        return self.redis.hget(ONESHOT_DATA_KEY, task_id)

    def claim_oneshot(self, task_id: str) -> bool:
        """Take a due one-shot task off the index.

        Only the caller whose removal succeeds owns the task, so a task is dispatched at most once
        even when several sweeps see it.

        Returns:
            True if this call removed the index entry
        """
        return self.redis.zrem(ONESHOT_INDEX_KEY, task_id) == 1

    def discard_oneshot_payload(self, task_id: str) -> None:
        self.redis.hdel(ONESHOT_DATA_KEY, task_id)

    def discard_oneshot(self, task_id: str) -> None:
        """Drop both the index entry and the payload of a one-shot task."""
        self.redis.zrem(ONESHOT_INDEX_KEY, task_id)
        self.discard_oneshot_payload(task_id)

    def discard_index_entry(self, task_id: str) -> None:
        self.redis.zrem(ONESHOT_INDEX_KEY, task_id)
