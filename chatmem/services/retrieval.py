"""
Retrieval Composer: ranked long-term memories for a live query.
"""

import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.core import LONG_TERM_NAMESPACES, MemoryTier, RetrievalResult, RetrievedMemory, SceneHints, VectorMatch
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import RetrievalConfig, config
from ..utils.logging_config import get_logger
from ..utils.message_store import MessageStore, MessageStoreError
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import format_relative_time

logger = get_logger(__name__)


def merge_matches(per_namespace: List[List[VectorMatch]]) -> List[VectorMatch]:
    """Concatenate namespace results in query order and sort by score, descending.

    The sort is stable, so equal scores keep namespace-query order.
    """
    merged = [match for matches in per_namespace for match in matches]
    return sorted(merged, key=lambda match: match.score, reverse=True)


class RetrievalComposer:
    """Parallel top-k search over the long-term namespaces with hydration and scene hints."""

    def __init__(self,
                 embedder: BedrockEmbed,
                 vector_store: OpenSearchClient,
                 message_store: MessageStore,
                 retrieval_config: Optional[RetrievalConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.embedder = embedder
        self.vector_store = vector_store
        self.message_store = message_store
        self.config = retrieval_config or config.retrieval
        self.clock = clock

    def retrieve(self, query: str, group_id: int = 0, user_id: int = 0, top_k: Optional[int] = None) -> RetrievalResult:
        """
        Retrieve memories relevant to a query.

        Args:
            query: Live query text
            group_id: Only memories from this group, 0 for any
            user_id: Only memories from this user, 0 for any
            top_k: Maximum memories returned, config default if None

        Returns:
            Ranked memories with confidence and scene hints; empty when embedding fails
        """
        top_k = top_k or self.config.top_k

        try:
            vector = self.embedder.embed_query(query)
        except BedrockEmbedError as e:
            logger.warning(f'Query embedding failed, retrieving nothing: {e}')
            return RetrievalResult()

        metadata_filter = {}
        if group_id:
            metadata_filter['group_id'] = group_id
        if user_id:
            metadata_filter['user_id'] = user_id

        matches = merge_matches(self._query_namespaces(vector, metadata_filter))
        if not matches:
            return RetrievalResult()

        try:
            hydrated = {message.vector_id: message for message in self.message_store.find_by_vector_ids([m.id for m in matches])}
        except MessageStoreError as e:
            logger.warning(f'Hydration failed, retrieving nothing: {e}')
            return RetrievalResult()

        now = self.clock()
        memories = []
        for match in matches:
            message = hydrated.get(match.id)
            if message is None:
                logger.debug(f'Dropping unhydrated vector {match.id}')
                continue
            memories.append(
                RetrievedMemory(vector_id=match.id,
                                message_ref=message.message_ref,
                                content=message.content,
                                score=match.score,
                                namespace=match.namespace,
                                created_at=message.created_at,
                                age=format_relative_time(message.created_at, datetime.fromtimestamp(now, message.created_at.tzinfo))))
            if len(memories) == top_k:
                break

        result = self._compose(memories)
        logger.debug(f'Retrieved {len(memories)} memories (max score {result.max_score:.3f})')
        return result

    def _query_namespaces(self, vector: List[float], metadata_filter: Dict[str, int]) -> List[List[VectorMatch]]:
        # Each call owns its pool; concurrent retrievals share no workers
        executor = ThreadPoolExecutor(max_workers=len(LONG_TERM_NAMESPACES), thread_name_prefix='retrieval')
        futures = {
            namespace:
            executor.submit(self.vector_store.query_top_k, namespace, vector, self.config.top_k_per_namespace,
                            metadata_filter)
            for namespace in LONG_TERM_NAMESPACES
        }
        wait(futures.values(), timeout=self.config.timeout_seconds)
        executor.shutdown(wait=False)

        results = []
        for namespace, future in futures.items():
            if not future.done():
                future.cancel()
                logger.warning(f'Namespace {namespace} query timed out after {self.config.timeout_seconds}s, skipping')
                continue
            try:
                results.append(future.result())
            except Exception as e:
                logger.warning(f'Namespace {namespace} query failed, skipping: {e}')
        return results

    def _compose(self, memories: List[RetrievedMemory]) -> RetrievalResult:
        max_score = max((memory.score for memory in memories), default=0.0)

        personal = any(memory.namespace == MemoryTier.PERSONAL.value and memory.score > self.config.personal_scene_threshold
                       for memory in memories)
        tech = any(memory.namespace == MemoryTier.CHAT.value and any(keyword in memory.content.lower()
                                                                    for keyword in self.config.tech_keywords)
                   for memory in memories)
        fuzzy = 0.0 < max_score < self.config.fuzzy_threshold

        return RetrievalResult(memories=memories,
                               max_score=max_score,
                               high_confidence=max_score > self.config.high_confidence_threshold,
                               scene=SceneHints(tech=tech, personal=personal, fuzzy=fuzzy))
