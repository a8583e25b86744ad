"""
Recurring Trigger Engine: fires periodic notification tasks on their schedule expression.
"""

import threading
from typing import Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from ..models.core import ScheduledTask
from ..utils.config import SchedulerConfig, config
from ..utils.logging_config import get_logger
from ..utils.notifier import Notifier, NotifyFailedError
from ..utils.schedule_expr import parse_schedule

logger = get_logger(__name__)


class RecurringTriggerEngine:
    """In-process cron engine plus the task id -> job handle registry mirroring it.

    The registry is the only process-local scheduling state; it is rebuilt from
    the task store on every start.
    """

    def __init__(self,
                 notifier: Notifier,
                 scheduler_config: Optional[SchedulerConfig] = None,
                 scheduler: Optional[BackgroundScheduler] = None):
        self.notifier = notifier
        self.config = scheduler_config or config.scheduler
        self.scheduler = scheduler or self._build_scheduler()
        self._entries: Dict[str, str] = {}
        self._lock = threading.RLock()

    def _build_scheduler(self) -> BackgroundScheduler:
        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': self.config.misfire_grace_seconds
        }
        if self.config.timezone:
            return BackgroundScheduler(job_defaults=job_defaults, timezone=self.config.timezone)
        return BackgroundScheduler(job_defaults=job_defaults)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info('Recurring trigger engine started')

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info('Recurring trigger engine stopped')

    def register(self, task: ScheduledTask) -> str:
        """Schedule a periodic task, replacing any entry already registered under its id.

        Returns:
            Handle of the engine entry

        Raises:
            InvalidScheduleError: If the task's schedule expression cannot be parsed
        """
        trigger = parse_schedule(task.time_expr, self.config.timezone or None)

        with self._lock:
            if task.id in self._entries:
                self.unregister(task.id)
            job = self.scheduler.add_job(self._fire,
                                         trigger,
                                         id=task.id,
                                         name=f'periodic:{task.id}',
                                         args=[task],
                                         replace_existing=True)
            self._entries[task.id] = job.id

        logger.debug(f"Registered periodic task {task.id} ('{task.time_expr}')")
        return job.id

    def unregister(self, task_id: str) -> bool:
        """Remove a task's engine entry.

        Returns:
            True if the task was registered
        """
        with self._lock:
            handle = self._entries.pop(task_id, None)
            if handle is None:
                return False
            try:
                self.scheduler.remove_job(handle)
            except JobLookupError:
                logger.warning(f'Engine entry {handle} for task {task_id} was already gone')

        logger.debug(f'Unregistered periodic task {task_id}')
        return True

    def has(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._entries

    def registered_task(self, task_id: str) -> Optional[ScheduledTask]:
        """The task currently registered under an id, if any."""
        with self._lock:
            handle = self._entries.get(task_id)
            job = self.scheduler.get_job(handle) if handle else None
            return job.args[0] if job else None

    def task_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Drop every registered entry, as after a process restart."""
        with self._lock:
            for task_id in list(self._entries):
                self.unregister(task_id)

    def _fire(self, task: ScheduledTask) -> None:
        try:
            self.notifier.deliver(task.group_id, task.user_id, f'{self.config.periodic_prefix}{task.content}')
            logger.info(f'Fired periodic task {task.id}')
        except NotifyFailedError as e:
            logger.error(f'Periodic task {task.id} delivery failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error firing periodic task {task.id}: {e}')
