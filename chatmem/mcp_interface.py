"""
MCP Interface Layer using fastmcp: memory ingestion, retrieval and task management for the chat front end.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from chatmem.models.core import MessageIdentity, ScheduledTask, TaskKind
from chatmem.services.chat_tools import ChatTools
from chatmem.services.memory_management import MemoryManagementService
from chatmem.utils.config import config
from chatmem.utils.health_check import check_health, get_health_status, get_system_info
from chatmem.utils.logging_config import get_logger
from chatmem.utils.redis_client import StoreUnavailableError
from chatmem.utils.schedule_expr import InvalidScheduleError

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Chat Memory')
memory_service = MemoryManagementService()
task_scheduler = memory_service.task_scheduler
chat_tools = ChatTools(task_scheduler, memory_service.group_settings)


@mcp.tool()
def classify_and_route(content: str, user_id: int, group_id: int = 0, nickname: str = '') -> bool:
    """Archive a chat message in the background.

    Args:
        content: Message text
        user_id: Sender
        group_id: Group the message was sent in, 0 for a private chat
        nickname: Sender display name

    Returns:
        True once the message is queued; classification and storage happen asynchronously
    """
    memory_service.classify_and_route(content, MessageIdentity(user_id=user_id, group_id=group_id, nickname=nickname))
    return True


@mcp.tool()
def retrieve_memories(query: str, group_id: int = 0, user_id: int = 0, top_k: int = 5) -> Dict[str, Any]:
    """Retrieve long-term memories relevant to a query.

    Args:
        query: Natural language query
        group_id: Restrict to memories from this group, 0 for any
        user_id: Restrict to memories from this user, 0 for any
        top_k: Maximum number of memories (default: 5)

    Returns:
        Ranked memories with score and age, plus confidence and scene hints
    """
    if not query or not query.strip():
        return {'memories': [], 'max_score': 0.0, 'high_confidence': False, 'scene': {}}

    result = memory_service.retrieve(query, group_id=group_id, user_id=user_id, top_k=top_k)
    logger.debug(f'MCP retrieve returned {len(result.memories)} memories')
    return {
        'memories': [{
            'content': memory.content,
            'score': memory.score,
            'namespace': memory.namespace,
            'age': memory.age,
            'message_ref': memory.message_ref
        } for memory in result.memories],
        'max_score': result.max_score,
        'high_confidence': result.high_confidence,
        'scene': {
            'tech': result.scene.tech,
            'personal': result.scene.personal,
            'fuzzy': result.scene.fuzzy
        }
    }


@mcp.tool()
def recent_temporary_memories(group_id: int, limit: int = 10) -> List[str]:
    """Short-lived states (busy, hungry, away...) recently shared in a group."""
    try:
        return memory_service.recent_temporary(group_id, limit)
    except StoreUnavailableError as e:
        logger.warning(f'Temporary memories unavailable: {e}')
        return []


@mcp.tool()
def add_task(kind: str,
             content: str,
             group_id: int = 0,
             user_id: int = 0,
             target_at: int = 0,
             time_expr: str = '',
             task_id: Optional[str] = None) -> Dict[str, Any]:
    """Schedule a notification.

    Args:
        kind: 'once' or 'periodic'
        content: Notification text
        group_id: Destination group, 0 to notify user_id privately
        user_id: User to mention or notify
        target_at: Unix timestamp for once tasks
        time_expr: Schedule expression with seconds for periodic tasks
        task_id: Optional id, generated if omitted

    Returns:
        The stored task

    Raises:
        Exception: If the schedule is invalid or the store is unavailable
    """
    try:
        task_kind = TaskKind(kind)
    except ValueError:
        raise Exception(f"Unknown task kind {kind!r}, expected 'once' or 'periodic'")

    task = ScheduledTask(id=task_id or '',
                         kind=task_kind,
                         content=content,
                         group_id=group_id,
                         user_id=user_id,
                         target_at=target_at,
                         time_expr=time_expr)
    try:
        return task_scheduler.add_task(task).to_dict()
    except (InvalidScheduleError, StoreUnavailableError) as e:
        logger.error(f'MCP add_task failed: {e}')
        raise Exception(f'Add task failed: {e}')


@mcp.tool()
def list_tasks(group_id: int = 0, user_id: int = 0) -> List[Dict[str, Any]]:
    """List scheduled tasks; 0 matches every group or user."""
    try:
        return [task.to_dict() for task in task_scheduler.list_tasks(group_id, user_id)]
    except StoreUnavailableError as e:
        logger.error(f'MCP list_tasks failed: {e}')
        raise Exception(f'List tasks failed: {e}')


@mcp.tool()
def remove_task(task_id: str) -> bool:
    """Remove a scheduled task. Removing an unknown id succeeds."""
    try:
        task_scheduler.remove_task(task_id)
        return True
    except StoreUnavailableError as e:
        logger.error(f'MCP remove_task failed: {e}')
        raise Exception(f'Remove task failed: {e}')


@mcp.tool()
def list_chat_tools() -> List[Dict[str, Any]]:
    """Function-calling definitions of the user-facing chat tools."""
    return chat_tools.definitions()


@mcp.tool()
def execute_chat_tool(name: str, user_id: int, group_id: int = 0, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a user-facing chat tool (reminders, alarms, bot and memory switches).

    Admin-only tools are allowed for the configured super users.
    """
    result = chat_tools.execute(name, args or {}, group_id, user_id, is_super_user=user_id in config.super_users)
    return result.to_dict()


@mcp.tool()
def health() -> Dict[str, Any]:
    """Health status of the external services."""
    return get_health_status()


@mcp.tool()
def system_info() -> Dict[str, Any]:
    """Service version, key configuration and health status."""
    return get_system_info()


if __name__ == '__main__':
    if not check_health():
        logger.warning('Starting with unhealthy components, see the health tool for details')
    task_scheduler.start()
    try:
        mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        task_scheduler.shutdown()
        memory_service.shutdown(wait=False)
