"""Shared test fixtures and in-memory fakes of the external collaborators."""

import fnmatch
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from chatmem.models.core import HydratedMessage, MessageIdentity, VectorMatch
from chatmem.services.recurring_engine import RecurringTriggerEngine
from chatmem.services.task_store import TaskStore
from chatmem.utils.bedrock_embed import BedrockEmbedError
from chatmem.utils.bedrock_llm import BedrockLLMError
from chatmem.utils.config import MemoryConfig, RetrievalConfig, SchedulerConfig
from chatmem.utils.message_store import MessageStoreError
from chatmem.utils.notifier import NotifyFailedError
from chatmem.utils.opensearch_client import OpenSearchError
from chatmem.utils.redis_client import StoreUnavailableError

# 2026-03-01 12:00:00 UTC
NOW = 1772366400

# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Settable wall clock returning unix seconds."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedisClient:
    """In-memory stand-in for RedisClient. Set ``available = False`` to simulate an outage."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.available = True
        self.set_calls: List[Tuple[str, str, Optional[int]]] = []

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError('Connection refused')

    def set(self, key, value, ttl_seconds=None):
        self._check()
        self.set_calls.append((key, value, ttl_seconds))
        self.values[key] = value
        self.ttls[key] = ttl_seconds
        return True

    def mget(self, keys):
        self._check()
        return [self.values.get(key) for key in keys]

    def scan_keys(self, pattern, count=100):
        self._check()
        return [key for key in self.values if fnmatch.fnmatchcase(key, pattern)]

    def hget(self, name, field):
        self._check()
        return self.hashes.get(name, {}).get(field)

    def hset(self, name, field, value):
        self._check()
        bucket = self.hashes.setdefault(name, {})
        created = 0 if field in bucket else 1
        bucket[field] = value
        return created

    def hdel(self, name, field):
        self._check()
        return 1 if self.hashes.get(name, {}).pop(field, None) is not None else 0

    def hgetall(self, name):
        self._check()
        return dict(self.hashes.get(name, {}))

    def hvals(self, name):
        self._check()
        return list(self.hashes.get(name, {}).values())

    def zadd(self, name, member, score):
        self._check()
        bucket = self.zsets.setdefault(name, {})
        created = 0 if member in bucket else 1
        bucket[member] = score
        return created

    def zrangebyscore(self, name, min_score, max_score):
        self._check()
        items = sorted(self.zsets.get(name, {}).items(), key=lambda item: (item[1], item[0]))
        return [member for member, score in items if min_score <= score <= max_score]

    def zrem(self, name, member):
        self._check()
        return 1 if self.zsets.get(name, {}).pop(member, None) is not None else 0

    def health_check(self):
        return self.available


class FakeNotifier:
    """Records deliveries; raises NotifyFailedError while ``fail`` is set."""

    def __init__(self):
        self.deliveries: List[Tuple[int, int, str]] = []
        self.fail = False

    def deliver(self, group_id, user_id, text):
        if self.fail:
            raise NotifyFailedError('send_group_msg rejected: retcode=100')
        self.deliveries.append((group_id, user_id, text))


class FakeLLM:
    """Returns a canned reply, or raises BedrockLLMError when ``error`` is set."""

    def __init__(self, reply: str = '', error: Optional[str] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []

    def complete(self, prompt, max_tokens=None, temperature=None, system_prompt=''):
        self.prompts.append(prompt)
        if self.error:
            raise BedrockLLMError(self.error)
        return self.reply


class FakeEmbed:
    """Deterministic embedder recording the mode of every call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Tuple[str, str]] = []

    def _embed(self, text, mode):
        self.calls.append((mode, text))
        if self.fail:
            raise BedrockEmbedError('ThrottlingException')
        return [0.1, 0.2, 0.3, 0.4]

    def embed_document(self, text):
        return self._embed(text, 'passage')

    def embed_query(self, text):
        return self._embed(text, 'query')


class FakeVectorStore:
    """Vector namespaces returning preset scores per namespace."""

    def __init__(self, results: Optional[Dict[str, List[Tuple[str, float]]]] = None):
        self.results = results or {}
        self.upserts: List[Tuple[str, str, List[float], Dict[str, Any]]] = []
        self.queries: List[Tuple[str, int, Dict[str, Any]]] = []
        self.failing_namespaces = set()

    def upsert_vector(self, namespace, vector_id, vector, metadata):
        if namespace in self.failing_namespaces:
            raise OpenSearchError(f'{namespace} unavailable')
        self.upserts.append((namespace, vector_id, vector, metadata))

    def query_top_k(self, namespace, vector, k, metadata_filter=None):
        self.queries.append((namespace, k, dict(metadata_filter or {})))
        if namespace in self.failing_namespaces:
            raise OpenSearchError(f'{namespace} unavailable')
        matches = [VectorMatch(id=vector_id, score=score, namespace=namespace) for vector_id, score in self.results.get(namespace, [])]
        return matches[:k]


class FakeMessageStore:
    """Raw messages and vector associations held in dictionaries."""

    def __init__(self):
        self.messages: Dict[str, Tuple[MessageIdentity, str]] = {}
        self.associations: Dict[str, HydratedMessage] = {}
        self.fail_saves = False

    def save_raw_message(self, identity, content, created_at=None):
        if self.fail_saves:
            raise MessageStoreError('Failed to save raw message: connection reset')
        message_ref = str(len(self.messages) + 1)
        self.messages[message_ref] = (identity, content)
        return message_ref

    def save_vector_association(self, vector_id, message_ref, content, created_at):
        self.associations[vector_id] = HydratedMessage(vector_id=vector_id,
                                                       message_ref=message_ref,
                                                       content=content,
                                                       created_at=created_at)

    def find_by_vector_ids(self, vector_ids):
        return [self.associations[vector_id] for vector_id in vector_ids if vector_id in self.associations]

    def add(self, vector_id: str, content: str, created_at: datetime) -> None:
        self.save_vector_association(vector_id, f'ref_{vector_id}', content, created_at)


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(poll_interval_seconds=0.05,
                           timezone='UTC',
                           misfire_grace_seconds=30,
                           periodic_prefix='【周期提醒】',
                           proactive_delay_seconds=4 * 3600,
                           proactive_fallback_message='记得你说今天有事，一切还顺利吗？')


@pytest.fixture
def memory_config() -> MemoryConfig:
    return MemoryConfig(temporary_ttl_seconds=7200, min_content_length=5, ingest_workers=2)


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(top_k=5,
                           top_k_per_namespace=3,
                           timeout_seconds=2,
                           high_confidence_threshold=0.85,
                           personal_scene_threshold=0.7,
                           fuzzy_threshold=0.6,
                           tech_keywords=['err', 'code', 'api', 'func'])


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def embedder() -> FakeEmbed:
    return FakeEmbed()


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def message_store() -> FakeMessageStore:
    return FakeMessageStore()


@pytest.fixture
def engine(notifier, scheduler_config) -> RecurringTriggerEngine:
    """Engine over a scheduler that is never started, so jobs stay pending and never fire on their own."""
    return RecurringTriggerEngine(notifier, scheduler_config, scheduler=BackgroundScheduler(timezone='UTC'))


@pytest.fixture
def task_store(redis, engine, clock) -> TaskStore:
    return TaskStore(redis, engine, clock=clock)
