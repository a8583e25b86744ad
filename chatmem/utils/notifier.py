"""
Notification sink delivering scheduled messages through a OneBot v11 HTTP endpoint.
"""

from typing import Any, Dict, Optional, Protocol

import requests

from .config import NotifierConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class NotifyFailedError(Exception):
    """Raised when a notification could not be delivered."""
    pass


class Notifier(Protocol):
    """Anything able to deliver text to a group (mentioning a user) or privately to a user."""

    def deliver(self, group_id: int, user_id: int, text: str) -> None:
        ...


def mention(user_id: int, text: str) -> str:
    """Prefix text with a CQ at-code for user_id."""
    return f'[CQ:at,qq={user_id}] {text}'


class OneBotNotifier:
    """OneBot v11 HTTP API client used as the scheduler's notification sink."""

    def __init__(self, config: NotifierConfig, session: Optional[requests.Session] = None):
        """
        Initialize the notifier.

        Args:
            config: NotifierConfig with the OneBot HTTP endpoint
            session: Optional requests session, a new one is created if None
        """
        self.config = config
        self.base_url = config.base_url.rstrip('/')
        self.session = session or requests.Session()
        if config.access_token:
            self.session.headers['Authorization'] = f'Bearer {config.access_token}'

        logger.info(f'Initialized OneBot notifier for {self.base_url}')

    def deliver(self, group_id: int, user_id: int, text: str) -> None:
        """
        Deliver text to a group or, when group_id is unset, privately to user_id.

        Raises:
            NotifyFailedError: If the request fails or OneBot reports an error
        """
        if group_id:
            action = 'send_group_msg'
            payload: Dict[str, Any] = {'group_id': group_id, 'message': mention(user_id, text) if user_id else text}
        elif user_id:
            action = 'send_private_msg'
            payload = {'user_id': user_id, 'message': text}
        else:
            raise NotifyFailedError('Notification has neither group nor user destination')

        try:
            response = self.session.post(f'{self.base_url}/{action}', json=payload, timeout=self.config.timeout)
            response.raise_for_status()
            body = response.json() if response.content else {}
        except (requests.RequestException, ValueError) as e:
            logger.warning(f'OneBot {action} failed for group={group_id} user={user_id}: {e}')
            raise NotifyFailedError(f'{action} failed: {e}')

        if body.get('status') == 'failed' or body.get('retcode', 0) != 0:
            logger.warning(f'OneBot {action} rejected for group={group_id} user={user_id}: {body}')
            raise NotifyFailedError(f"{action} rejected: retcode={body.get('retcode')} {body.get('wording', '')}".strip())

        logger.debug(f'Delivered {action} to group={group_id} user={user_id}')
