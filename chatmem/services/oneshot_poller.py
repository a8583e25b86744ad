"""
One-shot Poller: sweeps the task store for due one-shot tasks and dispatches them.
"""

import threading
import time
from typing import Callable, Optional

from ..models.core import ScheduledTask
from ..utils.config import SchedulerConfig, config
from ..utils.logging_config import get_logger
from ..utils.notifier import Notifier, NotifyFailedError
from ..utils.redis_client import StoreUnavailableError
from .proactive_care import ProactiveCareError, ProactiveCareService
from .task_store import TaskStore

logger = get_logger(__name__)


class OneShotPoller:
    """Background loop dispatching due one-shot tasks at most once."""

    def __init__(self,
                 store: TaskStore,
                 notifier: Notifier,
                 proactive_care: Optional[ProactiveCareService] = None,
                 scheduler_config: Optional[SchedulerConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.notifier = notifier
        self.proactive_care = proactive_care
        self.config = scheduler_config or config.scheduler
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='oneshot-poller', daemon=True)
        self._thread.start()
        logger.info(f'One-shot poller started (interval {self.config.poll_interval_seconds}s)')

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info('One-shot poller stopped')

    def _run(self) -> None:
        while not self._stop_event.wait(self.config.poll_interval_seconds):
            try:
                self.poll_once()
            except Exception as e:
                # The loop must survive anything a single sweep throws
                logger.error(f'Unexpected error in one-shot sweep: {e}')

    def poll_once(self, now: Optional[float] = None) -> int:
        """
        Run one sweep over the due one-shot tasks.

        Args:
            now: Sweep time as a unix timestamp, the clock if None

        Returns:
            Number of tasks dispatched
        """
        now = self.clock() if now is None else now
        try:
            due_ids = self.store.due_task_ids(now)
        except StoreUnavailableError as e:
            logger.warning(f'Skipping one-shot sweep, store unavailable: {e}')
            return 0

        dispatched = 0
        for task_id in due_ids:
            try:
                if self._dispatch(task_id):
                    dispatched += 1
            except StoreUnavailableError as e:
                # Remaining entries stay in the index for the next tick
                logger.warning(f'Aborting one-shot sweep at {task_id}, store unavailable: {e}')
                break

        if dispatched:
            logger.info(f'Dispatched {dispatched} one-shot task(s)')
        return dispatched

    def _dispatch(self, task_id: str) -> bool:
        payload = self.store.get_oneshot_payload(task_id)
        if payload is None:
            # Removed after being indexed; drop the stale reference
            logger.debug(f'Stale one-shot index entry {task_id}, dropping')
            self.store.discard_index_entry(task_id)
            return False

        try:
            task = ScheduledTask.from_json(payload)
        except ValueError as e:
            logger.error(f'Dropping malformed one-shot task {task_id}: {e}')
            self.store.discard_oneshot(task_id)
            return False

        if not self.store.claim_oneshot(task_id):
            logger.debug(f'One-shot task {task_id} already claimed, skipping')
            return False

        try:
            self.notifier.deliver(task.group_id, task.user_id, self._content_for(task))
            logger.info(f'Fired one-shot task {task_id}')
        except NotifyFailedError as e:
            logger.error(f'One-shot task {task_id} delivery failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error delivering one-shot task {task_id}: {e}')
        # Claimed tasks are never redelivered, whatever the outcome
        try:
            self.store.discard_oneshot_payload(task_id)
        except StoreUnavailableError as e:
            logger.warning(f'Could not drop payload of dispatched one-shot task {task_id}: {e}')
        return True

    def _content_for(self, task: ScheduledTask) -> str:
        if not task.is_proactive:
            return task.content

        fallback = self.config.proactive_fallback_message
        if self.proactive_care is None:
            return fallback
        try:
            return self.proactive_care.generate_reply(task.content, task.group_id)
        except ProactiveCareError as e:
            logger.warning(f'Proactive reply for {task.id} unavailable, using fallback: {e}')
            return fallback
