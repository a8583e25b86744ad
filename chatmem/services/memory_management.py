"""
Memory Management Service: the ingestion pipeline (classify and route) and retrieval facade.
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional

from ..models.core import MemoryRecord, MessageIdentity, RetrievalResult
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import MemoryConfig, config
from ..utils.logging_config import get_logger
from ..utils.message_store import MessageStore, MessageStoreError
from ..utils.notifier import OneBotNotifier
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.redis_client import RedisClient
from ..utils.text_utils import has_meaningful_content, is_command
from ..utils.timestamp_utils import to_datetime
from .group_settings import GroupSettingsStore
from .memory_classifier import MemoryClassifier
from .memory_router import MemoryRouter
from .proactive_care import ProactiveCareService
from .retrieval import RetrievalComposer
from .scheduler import TaskScheduler

logger = get_logger(__name__)


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


class MemoryManagementService:
    """Unified service for memory ingestion and retrieval."""

    def __init__(self,
                 task_scheduler: Optional[TaskScheduler] = None,
                 redis: Optional[RedisClient] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 embedder: Optional[BedrockEmbed] = None,
                 message_store: Optional[MessageStore] = None,
                 classifier: Optional[MemoryClassifier] = None,
                 group_settings: Optional[GroupSettingsStore] = None,
                 memory_config: Optional[MemoryConfig] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize the memory management service, building missing collaborators from config."""
        self.config = memory_config or config.memory
        self.clock = clock
        self.redis = redis or RedisClient(config.redis)
        self.embedder = embedder or BedrockEmbed(config.bedrock_embed)

        if opensearch is None:
            opensearch = OpenSearchClient(config.opensearch)
            try:
                opensearch.ensure_indices()
            except OpenSearchError as e:
                logger.warning(f'Failed to create OpenSearch indexes: {e}')
        self.opensearch = opensearch

        self.message_store = message_store or MessageStore(self.opensearch)
        self.classifier = classifier or MemoryClassifier()
        self.group_settings = group_settings or GroupSettingsStore(self.redis)
        self.task_scheduler = task_scheduler or TaskScheduler(self.redis, OneBotNotifier(config.notifier),
                                                              ProactiveCareService())

        self.router = MemoryRouter(self.redis,
                                   self.embedder,
                                   self.opensearch,
                                   self.message_store,
                                   self.task_scheduler.store,
                                   memory_config=self.config,
                                   scheduler_config=self.task_scheduler.config,
                                   clock=clock)
        self.retrieval = RetrievalComposer(self.embedder, self.opensearch, self.message_store, clock=clock)
        self._executor = ThreadPoolExecutor(max_workers=self.config.ingest_workers, thread_name_prefix='ingest')

        logger.info('Initialized MemoryManagementService')

    def classify_and_route(self, content: str, identity: MessageIdentity) -> Future:
        """Process an utterance off the caller's path.

        Returns:
            Future resolving to the routed MemoryRecord, or None when skipped
        """
        future = self._executor.submit(self.process_message, content, identity)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f'Message ingestion failed: {future.exception()}')

    def process_message(self,
                        content: str,
                        identity: MessageIdentity,
                        created_at: Optional[datetime] = None) -> Optional[MemoryRecord]:
        """Persist, classify and route one utterance.

        Args:
            content: Message text
            identity: Sender of the message
            created_at: Receive time, now if None

        Returns:
            The routed record, None if the message was skipped

        Raises:
            MemoryManagementError: If the raw message could not be persisted
        """
        if is_command(content) or not has_meaningful_content(content, self.config.min_content_length):
            logger.debug(f'Skipping non-archivable message from user {identity.user_id}')
            return None

        if not self.group_settings.is_memory_enabled(identity.group_id):
            logger.debug(f'Memory disabled for group {identity.group_id}, skipping')
            return None

        created_at = created_at or to_datetime(self.clock())
        try:
            message_ref = self.message_store.save_raw_message(identity, content, created_at)
        except MessageStoreError as e:
            raise MemoryManagementError(f'Raw message not persisted, routing aborted: {e}')

        classification = self.classifier.classify(content)
        record = MemoryRecord(message_ref=message_ref,
                              group_id=identity.group_id,
                              user_id=identity.user_id,
                              content=content,
                              tier=classification.tier,
                              created_at=created_at)

        if classification.proactive.triggered:
            if self.group_settings.is_bot_active(identity.group_id):
                self.router.schedule_follow_up(classification.proactive, record)
            else:
                logger.debug(f'Bot inactive in group {identity.group_id}, no follow-up scheduled')

        self.router.route(record)
        return record

    def retrieve(self, query: str, group_id: int = 0, user_id: int = 0, top_k: Optional[int] = None) -> RetrievalResult:
        return self.retrieval.retrieve(query, group_id=group_id, user_id=user_id, top_k=top_k)

    def recent_temporary(self, group_id: int, limit: int = 10) -> List[str]:
        return self.router.recent_temporary(group_id, limit)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info('MemoryManagementService shut down')
