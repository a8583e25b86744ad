"""
Memory Router: writes a classified utterance to the store matching its tier
and schedules proactive follow-ups.
"""

import time
from typing import Callable, List, Optional

from ..models.core import PROACTIVE_ID_PREFIX, MemoryRecord, MemoryTier, ProactiveSignal, ScheduledTask, TaskKind
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import MemoryConfig, SchedulerConfig, config
from ..utils.logging_config import get_logger
from ..utils.message_store import MessageStore, MessageStoreError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.redis_client import RedisClient, StoreUnavailableError
from ..utils.schedule_expr import InvalidScheduleError
from .proactive_care import build_payload
from .task_store import TaskStore, generate_task_id

logger = get_logger(__name__)


def temporary_key(group_id: int, user_id: int, message_ref: str) -> str:
    return f'temp:group:{group_id}:user:{user_id}:{message_ref}'


def vector_id_for(message_ref: str) -> str:
    return f'msg_{message_ref}'


class MemoryRouter:
    """Routes records to the TTL cache or a long-term namespace, never both."""

    def __init__(self,
                 redis: RedisClient,
                 embedder: BedrockEmbed,
                 vector_store: OpenSearchClient,
                 message_store: MessageStore,
                 task_store: TaskStore,
                 memory_config: Optional[MemoryConfig] = None,
                 scheduler_config: Optional[SchedulerConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.redis = redis
        self.embedder = embedder
        self.vector_store = vector_store
        self.message_store = message_store
        self.task_store = task_store
        self.memory_config = memory_config or config.memory
        self.scheduler_config = scheduler_config or config.scheduler
        self.clock = clock

    def route(self, record: MemoryRecord) -> None:
        """
        Store a record according to its tier. Failures are logged, not raised.

        Args:
            record: Classified record; vector_ref is filled in for long-term tiers
        """
        try:
            if record.tier == MemoryTier.TEMPORARY:
                self._store_temporary(record)
            else:
                self._store_long_term(record)
        except (StoreUnavailableError, BedrockEmbedError, OpenSearchError, MessageStoreError) as e:
            logger.error(f'Failed to route message {record.message_ref} ({record.tier.value}): {e}')
        except Exception as e:
            logger.error(f'Unexpected error routing message {record.message_ref}: {e}')

    def _store_temporary(self, record: MemoryRecord) -> None:
        key = temporary_key(record.group_id, record.user_id, record.message_ref)
        self.redis.set(key, record.content, ttl_seconds=self.memory_config.temporary_ttl_seconds)
        logger.info(f'Archived msg {record.message_ref} -> cache (temporary)')

    def _store_long_term(self, record: MemoryRecord) -> None:
        namespace = record.tier.namespace
        vector = self.embedder.embed_document(record.content)
        vector_id = vector_id_for(record.message_ref)

        metadata = {
            'group_id': record.group_id,
            'user_id': record.user_id,
            'created_at': record.created_at.isoformat()
        }
        self.vector_store.upsert_vector(namespace, vector_id, vector, metadata)
        record.vector_ref = vector_id

        self.message_store.save_vector_association(vector_id, record.message_ref, record.content, record.created_at)
        logger.info(f'Archived msg {record.message_ref} -> {namespace} namespace')

    def schedule_follow_up(self, signal: ProactiveSignal, record: MemoryRecord) -> Optional[ScheduledTask]:
        """
        Schedule a delayed check-in for a triggered signal, whatever the record's tier.

        Returns:
            The scheduled task, None if not triggered or scheduling failed
        """
        if not signal.triggered:
            return None

        task = ScheduledTask(id=generate_task_id(PROACTIVE_ID_PREFIX, record.user_id),
                             kind=TaskKind.ONCE,
                             content=build_payload(signal.reason, record.content),
                             group_id=record.group_id,
                             user_id=record.user_id,
                             target_at=int(self.clock()) + self.scheduler_config.proactive_delay_seconds)
        try:
            self.task_store.add_task(task)
        except (StoreUnavailableError, InvalidScheduleError) as e:
            logger.error(f'Failed to add follow-up task for msg {record.message_ref}: {e}')
            return None

        logger.info(f'Scheduled proactive follow-up {task.id} at {task.target_at} ({signal.reason})')
        return task

    def recent_temporary(self, group_id: int, limit: int = 10) -> List[str]:
        """
        Most recent temporary memories still cached for a group.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        keys = sorted(self.redis.scan_keys(f'temp:group:{group_id}:*'))
        if not keys:
            return []
        keys = keys[-limit:]
        return [value for value in self.redis.mget(keys) if value]
