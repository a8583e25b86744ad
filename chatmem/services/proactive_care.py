"""
Proactive care: turns a stored follow-up reason into a short caring check-in message.
"""

import json
from typing import Optional, Tuple

from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.text_utils import clean_llm_response

logger = get_logger(__name__)

PROACTIVE_CARE_PROMPT = """你是群聊里一位温暖、细心的朋友。几个小时前，一位群友说了下面这句话，当时你注意到了：{reason}

群友原话：{content}

现在请你主动发一条简短的关心消息，自然地问问后续情况。
要求：
- 一到两句话，口语化，不超过50个字。
- 不要提及"几个小时前我注意到"之类的说法，也不要暴露你是被定时提醒的。
- 只输出消息本身，不要任何解释或引号。"""


class ProactiveCareError(Exception):
    """Raised when no follow-up message could be generated."""
    pass


def build_payload(reason: str, content: str) -> str:
    """Encode a follow-up reason and the original message as task content."""
    return json.dumps({'reason': reason, 'content': content}, ensure_ascii=False)


def split_payload(payload: str) -> Tuple[str, str]:
    """Decode follow-up task content into (reason, content).

    Content that is not a payload object is read as a legacy ``reason|content``
    string split at the first separator, or as the bare original message.
    """
    try:
        data = json.loads(payload)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return str(data.get('reason') or '').strip(), str(data.get('content') or '').strip()

    if '|' not in payload:
        return '', payload.strip()
    reason, content = payload.split('|', 1)
    return reason.strip(), content.strip()


class ProactiveCareService:
    """Generates follow-up messages for proactive tasks with the main LLM."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)

    def generate_reply(self, payload: str, group_id: int) -> str:
        """
        Generate the check-in message for a proactive task.

        Args:
            payload: Stored task content, see build_payload
            group_id: Group the follow-up goes to, 0 for a private chat

        Returns:
            Message text

        Raises:
            ProactiveCareError: If generation fails or yields nothing
        """
        reason, content = split_payload(payload)
        prompt = PROACTIVE_CARE_PROMPT.format(reason=reason or '无', content=content)

        try:
            reply = clean_llm_response(self.llm.complete(prompt, max_tokens=128, temperature=0.7))
        except BedrockLLMError as e:
            logger.warning(f'Proactive reply generation failed for group {group_id}: {e}')
            raise ProactiveCareError(f'Failed to generate proactive reply: {e}')

        if not reply:
            raise ProactiveCareError('Model returned an empty proactive reply')

        logger.debug(f'Generated proactive reply for group {group_id}: {reply}')
        return reply
