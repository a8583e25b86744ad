"""
User-facing tools: reminders and alarms, plus the per-group bot and memory switches.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..models.core import ScheduledTask, TaskKind, ToolResult
from ..utils.logging_config import get_logger
from ..utils.redis_client import StoreUnavailableError
from ..utils.schedule_expr import InvalidScheduleError
from .group_settings import GroupSettingsStore
from .scheduler import TaskScheduler

logger = get_logger(__name__)

ADMIN_ONLY_MESSAGE = '抱歉，这个操作只有管理员才能执行哦~'
STORE_UNAVAILABLE_MESSAGE = '任务存储暂时不可用，请稍后再试'


@dataclass
class ToolSpec:
    """Function-calling description of a tool."""
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {'type': 'object', 'properties': {}})
    require_admin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'description': self.description, 'parameters': self.parameters}


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(name='toggle_bot',
             description='开启或关闭机器人在当前群的回复功能。当用户说想要关闭机器人、让机器人别说话、或者想要开启机器人时调用此工具。',
             parameters={
                 'type': 'object',
                 'properties': {
                     'active': {
                         'type': 'boolean',
                         'description': 'true 表示开启机器人，false 表示关闭机器人'
                     }
                 },
                 'required': ['active']
             },
             require_admin=True),
    ToolSpec(name='get_bot_status', description='查询机器人当前在本群的状态（是否开启）。'),
    ToolSpec(name='toggle_rag',
             description='开启或关闭机器人的记忆功能。当用户说不想被记录、关闭记忆、或者开启记忆功能时调用。',
             parameters={
                 'type': 'object',
                 'properties': {
                     'enabled': {
                         'type': 'boolean',
                         'description': 'true 表示开启记忆功能，false 表示关闭'
                     }
                 },
                 'required': ['enabled']
             },
             require_admin=True),
    ToolSpec(name='get_rag_status', description='查询记忆功能当前状态。当用户问机器人是否在记录消息时调用。'),
    ToolSpec(name='add_timer_task',
             description='设置定时提醒任务。可以是单次提醒（如10分钟后提醒我喝水）或周期性闹钟（如每天早上9点提醒我打卡）。',
             parameters={
                 'type': 'object',
                 'properties': {
                     'type': {
                         'type': 'string',
                         'enum': ['once', 'periodic'],
                         'description': '任务类型：once表示单次提醒，periodic表示周期闹钟。'
                     },
                     'content': {
                         'type': 'string',
                         'description': "提醒的具体内容，如'喝水'、'开会'。"
                     },
                     'delay_seconds': {
                         'type': 'integer',
                         'description': "针对 once 类型，设置多少秒后执行提醒。如'一小时后'转为 3600。"
                     },
                     'cron_expr': {
                         'type': 'string',
                         'description': "针对 periodic 类型，提供带秒的 6 位 Cron 表达式。如每天早九点：'0 0 9 * * *'。"
                     }
                 },
                 'required': ['type', 'content']
             }),
    ToolSpec(name='list_timer_tasks', description='列出当前用户在本群设置的所有活跃定时提醒和周期闹钟。'),
    ToolSpec(name='remove_timer_task',
             description='取消或删除指定的定时任务。需要提供任务 ID，建议先调用 list_timer_tasks 获取 ID。',
             parameters={
                 'type': 'object',
                 'properties': {
                     'id': {
                         'type': 'string',
                         'description': '要删除的任务 ID（如 task_123456...）。'
                     }
                 },
                 'required': ['id']
             }),
]


def format_task_line(task: ScheduledTask, show_user: bool = False) -> str:
    if task.kind == TaskKind.ONCE:
        when = datetime.fromtimestamp(task.target_at).strftime('%Y-%m-%d %H:%M:%S')
    else:
        when = f'周期性: {task.time_expr}'
    user_label = f' [用户:{task.user_id}]' if show_user else ''
    return f'- [{task.id}] {task.content} ({when}){user_label}'


class ChatTools:
    """Executes tool calls on behalf of a chat user."""

    def __init__(self, scheduler: TaskScheduler, group_settings: GroupSettingsStore, clock: Callable[[], float] = time.time):
        self.scheduler = scheduler
        self.group_settings = group_settings
        self.clock = clock
        self._specs = {spec.name: spec for spec in TOOL_SPECS}
        self._handlers: Dict[str, Callable[[Dict[str, Any], int, int, bool], ToolResult]] = {
            'toggle_bot': self._toggle_bot,
            'get_bot_status': self._get_bot_status,
            'toggle_rag': self._toggle_rag,
            'get_rag_status': self._get_rag_status,
            'add_timer_task': self._add_timer_task,
            'list_timer_tasks': self._list_timer_tasks,
            'remove_timer_task': self._remove_timer_task,
        }

    def definitions(self) -> List[Dict[str, Any]]:
        return [spec.to_dict() for spec in TOOL_SPECS]

    def execute(self, name: str, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool = False) -> ToolResult:
        """
        Run a tool call after the permission check.

        Args:
            name: Tool name
            args: Tool arguments
            group_id: Group the request came from, 0 for a private chat
            user_id: Requesting user
            is_super_user: Whether the requester may run admin-only tools

        Returns:
            ToolResult with a user-facing message
        """
        spec = self._specs.get(name)
        if spec is None:
            return ToolResult(success=False, message=f'未知的工具: {name}')
        if spec.require_admin and not is_super_user:
            logger.info(f'User {user_id} refused admin-only tool {name}')
            return ToolResult(success=False, message=ADMIN_ONLY_MESSAGE)

        try:
            return self._handlers[name](args or {}, group_id, user_id, is_super_user)
        except StoreUnavailableError as e:
            logger.error(f'Tool {name} failed, store unavailable: {e}')
            return ToolResult(success=False, message=STORE_UNAVAILABLE_MESSAGE)

    def _add_timer_task(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        kind = args.get('type')
        content = str(args.get('content') or '').strip()
        if not content:
            return ToolResult(success=False, message='请提供提醒内容')

        task = ScheduledTask(kind=TaskKind.ONCE, content=content, group_id=group_id, user_id=user_id)
        if kind == TaskKind.ONCE.value:
            delay = args.get('delay_seconds')
            if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay <= 0:
                return ToolResult(success=False, message='单次任务需要提供有效的 delay_seconds')
            task.target_at = int(self.clock()) + int(delay)
        elif kind == TaskKind.PERIODIC.value:
            cron_expr = args.get('cron_expr')
            if not isinstance(cron_expr, str) or not cron_expr.strip():
                return ToolResult(success=False, message='周期任务需要提供有效的 cron_expr')
            task.kind = TaskKind.PERIODIC
            task.time_expr = cron_expr.strip()
        else:
            return ToolResult(success=False, message='任务类型必须是 once 或 periodic')

        try:
            self.scheduler.add_task(task)
        except InvalidScheduleError as e:
            return ToolResult(success=False, message=f'设置提醒失败: {e}')

        return ToolResult(success=True, message=f'设置成功！到时间我会提醒你的~ ID: {task.id}', data=task.to_dict())

    def _list_timer_tasks(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        # Super users see every task of the group
        tasks = self.scheduler.list_tasks(group_id, 0 if is_super_user else user_id)
        if not tasks:
            return ToolResult(success=True, message='目前没有设置任何活跃的任务哦。', data=[])

        header = '本群当前活跃的定时任务如下（超级用户视图）：' if is_super_user else '你当前的定时任务如下：'
        lines = [header] + [format_task_line(task, show_user=is_super_user) for task in tasks]
        return ToolResult(success=True, message='\n'.join(lines), data=[task.to_dict() for task in tasks])

    def _remove_timer_task(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        task_id = args.get('id')
        if not isinstance(task_id, str) or not task_id.strip():
            return ToolResult(success=False, message='移除失败：请提供有效的任务 ID')

        self.scheduler.remove_task(task_id.strip())
        return ToolResult(success=True, message='成功取消了该任务！')

    def _toggle_bot(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        active = args.get('active')
        if not isinstance(active, bool):
            return ToolResult(success=False, message='参数 active 无效')

        self.group_settings.set_bot_active(group_id, active)
        return ToolResult(success=True, message='机器人已开启' if active else '机器人已关闭', data={'active': active})

    def _get_bot_status(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        active = self.group_settings.is_bot_active(group_id)
        return ToolResult(success=True,
                          message='机器人当前是开启状态' if active else '机器人当前是关闭状态',
                          data={'active': active})

    def _toggle_rag(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        enabled = args.get('enabled')
        if not isinstance(enabled, bool):
            return ToolResult(success=False, message='参数 enabled 无效')

        self.group_settings.set_memory_enabled(group_id, enabled)
        return ToolResult(success=True, message='记忆功能已开启' if enabled else '记忆功能已关闭', data={'rag_enabled': enabled})

    def _get_rag_status(self, args: Dict[str, Any], group_id: int, user_id: int, is_super_user: bool) -> ToolResult:
        enabled = self.group_settings.is_memory_enabled(group_id)
        return ToolResult(success=True,
                          message='记忆功能当前是开启状态' if enabled else '记忆功能当前是关闭状态',
                          data={'rag_enabled': enabled})
