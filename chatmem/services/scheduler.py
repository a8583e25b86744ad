"""
TaskScheduler: lifecycle of the hybrid scheduler (recurring engine, task store and one-shot poller).
"""

import threading
import time
from typing import Callable, List, Optional

from ..models.core import ScheduledTask
from ..utils.config import SchedulerConfig, config
from ..utils.logging_config import get_logger
from ..utils.notifier import Notifier
from ..utils.redis_client import RedisClient, StoreUnavailableError
from .oneshot_poller import OneShotPoller
from .proactive_care import ProactiveCareService
from .recurring_engine import RecurringTriggerEngine
from .task_store import TaskStore

logger = get_logger(__name__)


class TaskScheduler:
    """Owns the scheduler components and their init / reload / shutdown order."""

    def __init__(self,
                 redis: RedisClient,
                 notifier: Notifier,
                 proactive_care: Optional[ProactiveCareService] = None,
                 scheduler_config: Optional[SchedulerConfig] = None,
                 engine: Optional[RecurringTriggerEngine] = None,
                 clock: Callable[[], float] = time.time):
        self.config = scheduler_config or config.scheduler
        self.engine = engine or RecurringTriggerEngine(notifier, self.config)
        self.store = TaskStore(redis, self.engine, clock=clock)
        self.poller = OneShotPoller(self.store, notifier, proactive_care, self.config, clock=clock)
        self._lock = threading.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> int:
        """
        Start the engine, restore persisted periodic tasks and start polling.

        A store outage during the reload is logged; the scheduler still runs and
        a later reload() restores the periodic tasks.

        Returns:
            Number of periodic tasks restored
        """
        with self._lock:
            if self._started:
                return len(self.engine.task_ids())

            self.engine.start()
            try:
                loaded = self.store.reload_periodic_tasks()
            except StoreUnavailableError as e:
                logger.error(f'Could not reload periodic tasks on start: {e}')
                loaded = 0
            self.poller.start()
            self._started = True

        logger.info(f'Task scheduler started with {loaded} periodic task(s)')
        return loaded

    def reload(self) -> int:
        """
        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        return self.store.reload_periodic_tasks()

    def shutdown(self) -> None:
        with self._lock:
            if not self._started:
                return
            self.poller.stop(timeout=self.config.poll_interval_seconds)
            self.engine.shutdown()
            self._started = False
        logger.info('Task scheduler shut down')

    def add_task(self, task: ScheduledTask) -> ScheduledTask:
        return self.store.add_task(task)

    def list_tasks(self, group_id: int = 0, user_id: int = 0) -> List[ScheduledTask]:
        return self.store.list_tasks(group_id, user_id)

    def remove_task(self, task_id: str) -> None:
        self.store.remove_task(task_id)
