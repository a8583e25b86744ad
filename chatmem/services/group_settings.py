"""
Per-group switches for the bot and for memory archiving.
"""

from ..utils.logging_config import get_logger
from ..utils.redis_client import RedisClient, StoreUnavailableError

logger = get_logger(__name__)

SETTINGS_KEY = 'groups:settings'  # '{group_id}:{switch}' -> '1' | '0'

BOT_ACTIVE = 'bot_active'
MEMORY_ENABLED = 'memory_enabled'


class GroupSettingsStore:
    """Group switches kept in a Redis hash. Unknown groups have every switch on."""

    def __init__(self, redis: RedisClient):
        self.redis = redis

    def _get(self, group_id: int, switch: str) -> bool:
        try:
            value = self.redis.hget(SETTINGS_KEY, f'{group_id}:{switch}')
        except StoreUnavailableError as e:
            logger.warning(f'Cannot read {switch} for group {group_id}, assuming on: {e}')
            return True
        return value != '0'

    def _set(self, group_id: int, switch: str, enabled: bool) -> None:
        self.redis.hset(SETTINGS_KEY, f'{group_id}:{switch}', '1' if enabled else '0')
        logger.info(f"Group {group_id} {switch} set to {'on' if enabled else 'off'}")

    def is_bot_active(self, group_id: int) -> bool:
        return self._get(group_id, BOT_ACTIVE)

    def is_memory_enabled(self, group_id: int) -> bool:
        return self._get(group_id, MEMORY_ENABLED)

    def set_bot_active(self, group_id: int, active: bool) -> None:
        """
        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        self._set(group_id, BOT_ACTIVE, active)

    def set_memory_enabled(self, group_id: int, enabled: bool) -> None:
        """
        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        self._set(group_id, MEMORY_ENABLED, enabled)
