"""Tests for the ingestion pipeline of the memory management service."""

import pytest

from chatmem.models.core import MemoryTier, MessageIdentity
from chatmem.services.group_settings import GroupSettingsStore
from chatmem.services.memory_classifier import MemoryClassifier
from chatmem.services.memory_management import MemoryManagementError, MemoryManagementService
from chatmem.services.proactive_care import split_payload
from chatmem.services.scheduler import TaskScheduler
from chatmem.utils.config import BedrockLLMConfig

from tests.conftest import FakeLLM

ALICE = MessageIdentity(user_id=42, group_id=100, nickname='alice')


def build_classifier(reply: str = 'chat|false|闲聊', error=None) -> MemoryClassifier:
    llm_config = BedrockLLMConfig(region='us-east-1',
                                  model_id='test-model',
                                  max_tokens=64,
                                  temperature=0.1,
                                  retry_attempts=1,
                                  retry_delay=0,
                                  connect_timeout=1,
                                  read_timeout=2)
    return MemoryClassifier(llm=FakeLLM(reply=reply, error=error), llm_config=llm_config)


@pytest.fixture
def task_scheduler(redis, notifier, scheduler_config, engine, clock):
    return TaskScheduler(redis, notifier, None, scheduler_config, engine=engine, clock=clock)


@pytest.fixture
def make_service(redis, embedder, vector_store, message_store, memory_config, task_scheduler, clock):
    services = []

    def make(classifier=None):
        service = MemoryManagementService(task_scheduler=task_scheduler,
                                          redis=redis,
                                          opensearch=vector_store,
                                          embedder=embedder,
                                          message_store=message_store,
                                          classifier=classifier or build_classifier(),
                                          group_settings=GroupSettingsStore(redis),
                                          memory_config=memory_config,
                                          clock=clock)
        services.append(service)
        return service

    yield make
    for service in services:
        service.shutdown()


class TestProcessMessage:
    """Persist, classify and route a single utterance."""

    def test_chat_message_archived(self, make_service, message_store, vector_store):
        record = make_service().process_message('大家觉得这个方案怎么样', ALICE)

        assert record.tier == MemoryTier.CHAT
        assert message_store.messages[record.message_ref] == (ALICE, '大家觉得这个方案怎么样')
        assert [(namespace, vector_id) for namespace, vector_id, _, _ in vector_store.upserts] == [('chat', f'msg_{record.message_ref}')]

    def test_temporary_message_cached(self, make_service, redis, vector_store):
        service = make_service(build_classifier(reply='temporary|false|即时状态'))
        record = service.process_message('我先去洗个澡哈', ALICE)

        assert record.tier == MemoryTier.TEMPORARY
        assert service.recent_temporary(100) == ['我先去洗个澡哈']
        assert vector_store.upserts == []

    @pytest.mark.parametrize('content', ['/help me please', '好的', '[CQ:face,id=1][CQ:image,file=a.png]'])
    def test_skipped_messages(self, make_service, message_store, content):
        """Commands and messages without enough text are neither persisted nor routed."""
        assert make_service().process_message(content, ALICE) is None
        assert message_store.messages == {}

    def test_memory_disabled_group(self, make_service, redis, message_store):
        GroupSettingsStore(redis).set_memory_enabled(100, False)

        assert make_service().process_message('大家觉得这个方案怎么样', ALICE) is None
        assert message_store.messages == {}

    def test_raw_save_failure_aborts_routing(self, make_service, message_store, vector_store, redis):
        message_store.fail_saves = True

        with pytest.raises(MemoryManagementError):
            make_service().process_message('大家觉得这个方案怎么样', ALICE)
        assert vector_store.upserts == []
        assert redis.set_calls == []

    def test_classifier_fallback(self, make_service, vector_store):
        """With the model down, first-person disclosures still reach the personal namespace."""
        record = make_service(build_classifier(error='ReadTimeoutError')).process_message('我喜欢打篮球和游泳', ALICE)

        assert record.tier == MemoryTier.PERSONAL
        assert vector_store.upserts[0][0] == 'personal'


class TestProactiveFollowUp:
    """Triggered signals schedule one check-in when the bot is active."""

    def test_scheduled_when_active(self, make_service, task_scheduler):
        service = make_service(build_classifier(reply='temporary|true|明天面试'))
        service.process_message('明天要面试了好紧张', ALICE)

        tasks = task_scheduler.list_tasks(100, 42)
        assert len(tasks) == 1
        assert tasks[0].is_proactive
        assert split_payload(tasks[0].content) == ('明天面试', '明天要面试了好紧张')

    def test_not_scheduled_when_bot_inactive(self, make_service, task_scheduler, redis):
        GroupSettingsStore(redis).set_bot_active(100, False)
        service = make_service(build_classifier(reply='temporary|true|明天面试'))
        record = service.process_message('明天要面试了好紧张', ALICE)

        assert record is not None
        assert task_scheduler.list_tasks() == []

    def test_not_scheduled_without_trigger(self, make_service, task_scheduler):
        make_service(build_classifier(reply='personal|false|爱好')).process_message('我喜欢打篮球和游泳', ALICE)
        assert task_scheduler.list_tasks() == []


class TestClassifyAndRoute:

    def test_future_resolves_to_record(self, make_service, message_store):
        future = make_service().classify_and_route('大家觉得这个方案怎么样', ALICE)
        record = future.result(timeout=5)

        assert record.content == '大家觉得这个方案怎么样'
        assert record.message_ref in message_store.messages

    def test_failure_surfaces_on_future(self, make_service, message_store):
        message_store.fail_saves = True
        future = make_service().classify_and_route('大家觉得这个方案怎么样', ALICE)

        with pytest.raises(MemoryManagementError):
            future.result(timeout=5)
