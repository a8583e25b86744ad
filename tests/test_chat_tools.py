"""Tests for the user-facing chat tools and the group switches behind them."""

import pytest

from chatmem.models.core import TaskKind
from chatmem.services.chat_tools import ADMIN_ONLY_MESSAGE, STORE_UNAVAILABLE_MESSAGE, ChatTools, TOOL_SPECS
from chatmem.services.group_settings import SETTINGS_KEY, GroupSettingsStore
from chatmem.services.scheduler import TaskScheduler

from tests.conftest import NOW


@pytest.fixture
def group_settings(redis):
    return GroupSettingsStore(redis)


@pytest.fixture
def task_scheduler(redis, notifier, scheduler_config, engine, clock):
    return TaskScheduler(redis, notifier, None, scheduler_config, engine=engine, clock=clock)


@pytest.fixture
def tools(task_scheduler, group_settings, clock):
    return ChatTools(task_scheduler, group_settings, clock=clock)


class TestGroupSettings:
    """Per-group switches default to on."""

    def test_defaults(self, group_settings):
        assert group_settings.is_bot_active(100) is True
        assert group_settings.is_memory_enabled(100) is True

    def test_switches_are_independent(self, group_settings, redis):
        group_settings.set_bot_active(100, False)

        assert group_settings.is_bot_active(100) is False
        assert group_settings.is_memory_enabled(100) is True
        assert group_settings.is_bot_active(200) is True
        assert redis.hashes[SETTINGS_KEY] == {'100:bot_active': '0'}

    def test_reads_default_on_during_outage(self, group_settings, redis):
        group_settings.set_memory_enabled(100, False)
        redis.available = False
        assert group_settings.is_memory_enabled(100) is True


class TestDefinitions:

    def test_all_tools_described(self, tools):
        names = [definition['name'] for definition in tools.definitions()]
        assert names == [spec.name for spec in TOOL_SPECS]
        assert set(names) == {'toggle_bot', 'get_bot_status', 'toggle_rag', 'get_rag_status', 'add_timer_task', 'list_timer_tasks',
                              'remove_timer_task'}

    def test_unknown_tool(self, tools):
        result = tools.execute('format_disk', {}, 100, 42)
        assert result.success is False
        assert 'format_disk' in result.message


class TestAddTimerTask:
    """Reminder creation from tool arguments."""

    def test_once(self, tools, task_scheduler):
        result = tools.execute('add_timer_task', {'type': 'once', 'content': '喝水', 'delay_seconds': 600}, 100, 42)

        assert result.success is True
        assert result.data['type'] == 'once'
        assert result.data['target_at'] == NOW + 600
        assert result.data['id'] in result.message
        assert [task.id for task in task_scheduler.list_tasks(100, 42)] == [result.data['id']]

    def test_periodic(self, tools, task_scheduler):
        result = tools.execute('add_timer_task', {'type': 'periodic', 'content': '打卡', 'cron_expr': '0 0 9 * * *'}, 100, 42)

        assert result.success is True
        task = task_scheduler.list_tasks(100, 42)[0]
        assert task.kind == TaskKind.PERIODIC
        assert task_scheduler.engine.has(task.id)

    @pytest.mark.parametrize('args', [
        {'type': 'once', 'content': '喝水'},
        {'type': 'once', 'content': '喝水', 'delay_seconds': 0},
        {'type': 'once', 'content': '喝水', 'delay_seconds': '600'},
        {'type': 'once', 'content': '喝水', 'delay_seconds': True},
        {'type': 'periodic', 'content': '打卡'},
        {'type': 'periodic', 'content': '打卡', 'cron_expr': '  '},
        {'type': 'weekly', 'content': '打卡'},
        {'type': 'once', 'content': '', 'delay_seconds': 60},
    ])
    def test_invalid_arguments(self, tools, task_scheduler, args):
        result = tools.execute('add_timer_task', args, 100, 42)

        assert result.success is False
        assert task_scheduler.list_tasks() == []

    def test_malformed_cron(self, tools, task_scheduler):
        result = tools.execute('add_timer_task', {'type': 'periodic', 'content': '打卡', 'cron_expr': '0 9 * * *'}, 100, 42)

        assert result.success is False
        assert result.message.startswith('设置提醒失败')
        assert task_scheduler.engine.task_ids() == []

    def test_store_unavailable(self, tools, redis):
        redis.available = False
        result = tools.execute('add_timer_task', {'type': 'once', 'content': '喝水', 'delay_seconds': 600}, 100, 42)

        assert result.success is False
        assert result.message == STORE_UNAVAILABLE_MESSAGE


class TestListAndRemove:

    def add(self, tools, user_id, content='喝水'):
        return tools.execute('add_timer_task', {'type': 'once', 'content': content, 'delay_seconds': 600}, 100, user_id).data['id']

    def test_empty(self, tools):
        result = tools.execute('list_timer_tasks', {}, 100, 42)
        assert result.success is True
        assert result.data == []

    def test_user_sees_own_tasks(self, tools):
        mine = self.add(tools, 42)
        self.add(tools, 7, content='别人的')

        result = tools.execute('list_timer_tasks', {}, 100, 42)
        assert [task['id'] for task in result.data] == [mine]
        assert '喝水' in result.message
        assert '别人的' not in result.message

    def test_super_user_sees_group(self, tools):
        self.add(tools, 42)
        self.add(tools, 7)

        result = tools.execute('list_timer_tasks', {}, 100, 1, is_super_user=True)
        assert len(result.data) == 2
        assert '[用户:7]' in result.message

    def test_remove(self, tools, task_scheduler):
        task_id = self.add(tools, 42)

        result = tools.execute('remove_timer_task', {'id': task_id}, 100, 42)
        assert result.success is True
        assert task_scheduler.list_tasks() == []

    def test_remove_without_id(self, tools):
        result = tools.execute('remove_timer_task', {}, 100, 42)
        assert result.success is False


class TestSwitchTools:
    """Bot and memory switches, admin-only to change."""

    def test_toggle_requires_super_user(self, tools, group_settings):
        result = tools.execute('toggle_bot', {'active': False}, 100, 42)

        assert result.success is False
        assert result.message == ADMIN_ONLY_MESSAGE
        assert group_settings.is_bot_active(100) is True

    def test_toggle_bot(self, tools, group_settings):
        result = tools.execute('toggle_bot', {'active': False}, 100, 1, is_super_user=True)

        assert result.success is True
        assert result.data == {'active': False}
        assert group_settings.is_bot_active(100) is False
        assert tools.execute('get_bot_status', {}, 100, 42).data == {'active': False}

    def test_toggle_rag(self, tools, group_settings):
        tools.execute('toggle_rag', {'enabled': False}, 100, 1, is_super_user=True)

        assert group_settings.is_memory_enabled(100) is False
        assert tools.execute('get_rag_status', {}, 100, 42).data == {'rag_enabled': False}

    def test_toggle_with_invalid_argument(self, tools, group_settings):
        result = tools.execute('toggle_rag', {'enabled': 'no'}, 100, 1, is_super_user=True)

        assert result.success is False
        assert group_settings.is_memory_enabled(100) is True

    def test_status_readable_by_anyone(self, tools):
        result = tools.execute('get_rag_status', {}, 100, 42)
        assert result.success is True
        assert result.data == {'rag_enabled': True}
