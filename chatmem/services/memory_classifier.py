"""
Memory Classifier: assigns an utterance to a memory tier and detects proactive follow-up signals.

The model is asked for a single ``tier|triggered|reason`` line. Parsing is
strict about structure but lenient about values: an unknown tier becomes
``chat`` and anything other than a literal ``true`` means not triggered. When
the model is unreachable or answers with nothing, a regex over first-person
disclosures decides between ``personal`` and ``chat``, and never triggers a
follow-up.
"""

import re
from typing import List, Optional

from ..models.core import ClassificationResult, MemoryTier, ProactiveSignal
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig, config
from ..utils.logging_config import get_logger
from ..utils.text_utils import clean_llm_response

logger = get_logger(__name__)

CLASSIFIER_PROMPT = """你是一个深度社交观察员。分析以下群聊消息并给出分类。

### 分类规则：
- personal: 持久性个人信息（职业、爱好、身份、性格特征）。
- temporary: 临时状态（饿了、去洗澡、在忙、困了、即时情绪）。
- chat: 普通闲聊或讨论话题。

### 主动性探测 (Proactive)：
如果消息包含以下特征，请标记为触发主动关怀：
1. 强烈的负面情绪（极度焦虑、悲伤、受挫）。
2. 明确的短期重大计划（明天面试、下午相亲、要去赶飞机）。
3. 寻求帮助但未明确@机器人。

回复格式必须为："类型|是否触发(true/false)|原因描述"
示例："personal|false|普通爱好描述" 或 "temporary|true|用户表达了极度焦虑"

消息：{content}"""

# First-person disclosures that mark a message as personal when the model is unavailable
PERSONAL_PATTERNS: List[re.Pattern] = [
    re.compile(r'我(喜欢|爱|讨厌|不喜欢|偏好)'),
    re.compile(r'我(是|叫|名字)'),
    re.compile(r'我的(爱好|兴趣|习惯|工作|职业|年龄|生日)'),
    re.compile(r'(我今年|我属|我住在|我来自)'),
]


class ClassificationUnavailableError(Exception):
    """Raised when the model gives no usable classification."""
    pass


def classify_with_patterns(content: str) -> MemoryTier:
    for pattern in PERSONAL_PATTERNS:
        if pattern.search(content):
            return MemoryTier.PERSONAL
    return MemoryTier.CHAT


def parse_classification(text: str) -> ClassificationResult:
    """
    Parse a ``tier|triggered|reason`` model reply.

    Args:
        text: Raw model output

    Returns:
        Model-sourced classification result

    Raises:
        ClassificationUnavailableError: If the reply holds no content at all
    """
    cleaned = clean_llm_response(text or '')
    line = next((candidate.strip() for candidate in cleaned.splitlines() if candidate.strip()), '')
    # Quotes may wrap just the line the model meant
    line = line.strip('"\'`“”')
    if not line:
        raise ClassificationUnavailableError('Empty classification reply')

    parts = [part.strip() for part in line.split('|', 2)]

    try:
        tier = MemoryTier(parts[0].lower())
    except ValueError:
        logger.debug(f'Unknown tier {parts[0]!r}, defaulting to chat')
        tier = MemoryTier.CHAT

    triggered = len(parts) > 1 and parts[1].lower() == 'true'
    reason = parts[2] if len(parts) > 2 else ''

    return ClassificationResult(tier=tier, proactive=ProactiveSignal(triggered=triggered, reason=reason))


class MemoryClassifier:
    """Tier and proactive-signal classifier backed by a short-timeout Bedrock call."""

    def __init__(self, llm: Optional[BedrockLLM] = None, llm_config: Optional[BedrockLLMConfig] = None):
        self.llm_config = llm_config or config.classifier_llm
        self.llm = llm or BedrockLLM(self.llm_config)

    def classify(self, content: str) -> ClassificationResult:
        """
        Classify an utterance. Never raises for classifier failures.

        Args:
            content: Message text

        Returns:
            Model result, or the pattern fallback when the model is unavailable
        """
        try:
            result = self._classify_with_model(content)
            if result.proactive.triggered:
                logger.info(f'Proactive trigger detected: {result.proactive.reason}')
            logger.debug(f'Classified as {result.tier.value} by model')
            return result
        except ClassificationUnavailableError as e:
            tier = classify_with_patterns(content)
            logger.warning(f'Classifier unavailable, fallback tier {tier.value}: {e}')
            return ClassificationResult.fallback(tier)

    def _classify_with_model(self, content: str) -> ClassificationResult:
        try:
            reply = self.llm.complete(CLASSIFIER_PROMPT.format(content=content),
                                      max_tokens=self.llm_config.max_tokens,
                                      temperature=self.llm_config.temperature)
        except BedrockLLMError as e:
            raise ClassificationUnavailableError(f'Classification call failed: {e}')

        return parse_classification(reply)
