"""
Core data models for scheduled notifications and conversational memory.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

# Prefix of task ids created by the proactive follow-up path
PROACTIVE_ID_PREFIX = 'proactive_'

# Unset sentinel for group and user ids; group 0 means a private notification
UNSET = 0


class TaskKind(str, Enum):
    """Kind of a scheduled notification task."""
    ONCE = 'once'
    PERIODIC = 'periodic'


@dataclass
class ScheduledTask:
    """A one-shot or recurring notification task.

    Exactly one of ``target_at`` (once) and ``time_expr`` (periodic) is
    meaningful, selected by ``kind``.
    """
    kind: TaskKind
    content: str
    group_id: int = UNSET
    user_id: int = UNSET
    time_expr: str = ''  # Schedule expression for periodic tasks
    target_at: int = 0  # Unix timestamp for once tasks
    id: str = ''

    @property
    def is_periodic(self) -> bool:
        return self.kind == TaskKind.PERIODIC

    @property
    def is_proactive(self) -> bool:
        return self.id.startswith(PROACTIVE_ID_PREFIX)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'type': self.kind.value,
            'content': self.content,
            'group_id': self.group_id,
            'user_id': self.user_id,
            'time_expr': self.time_expr,
            'target_at': self.target_at
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict) -> 'ScheduledTask':
        """Build a task from its persisted form.

        Raises:
            ValueError: If the payload is missing fields or has an unknown type
        """
        if not isinstance(data, dict):
            raise ValueError(f'Expected task object, got {type(data).__name__}')
        try:
            return cls(id=str(data['id']),
                       kind=TaskKind(data.get('type')),
                       content=str(data.get('content', '')),
                       group_id=int(data.get('group_id') or 0),
                       user_id=int(data.get('user_id') or 0),
                       time_expr=str(data.get('time_expr') or ''),
                       target_at=int(data.get('target_at') or 0))
        except (KeyError, TypeError) as e:
            raise ValueError(f'Malformed task payload: {e}')

    @classmethod
    def from_json(cls, payload: str) -> 'ScheduledTask':
        try:
            data = json.loads(payload)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f'Invalid task JSON: {e}')
        return cls.from_dict(data)


class MemoryTier(str, Enum):
    """Durability/visibility class of a retained utterance."""
    TEMPORARY = 'temporary'
    PERSONAL = 'personal'
    CHAT = 'chat'

    @property
    def namespace(self) -> Optional[str]:
        """Long-term vector namespace of the tier, None for the TTL cache tier."""
        if self == MemoryTier.TEMPORARY:
            return None
        return self.value


# Long-term namespaces in query order
LONG_TERM_NAMESPACES = [MemoryTier.PERSONAL.value, MemoryTier.CHAT.value]


@dataclass
class ProactiveSignal:
    """Whether an utterance warrants an autonomous follow-up, and why."""
    triggered: bool = False
    reason: str = ''


class ClassificationSource(str, Enum):
    MODEL = 'model'
    FALLBACK = 'fallback'


@dataclass
class ClassificationResult:
    """Tier assignment of an utterance plus its proactive signal."""
    tier: MemoryTier
    proactive: ProactiveSignal = field(default_factory=ProactiveSignal)
    source: ClassificationSource = ClassificationSource.MODEL

    @classmethod
    def fallback(cls, tier: MemoryTier) -> 'ClassificationResult':
        return cls(tier=tier, proactive=ProactiveSignal(), source=ClassificationSource.FALLBACK)


@dataclass
class MessageIdentity:
    """Sender of an utterance."""
    user_id: int
    group_id: int = UNSET
    nickname: str = ''


@dataclass
class MemoryRecord:
    """A retained utterance on its way to the store matching its tier."""
    message_ref: str
    group_id: int
    user_id: int
    content: str
    tier: MemoryTier
    created_at: datetime
    vector_ref: Optional[str] = None


@dataclass
class HydratedMessage:
    """Original text behind a stored vector id."""
    vector_id: str
    message_ref: str
    content: str
    created_at: datetime


@dataclass
class VectorMatch:
    id: str
    score: float
    namespace: str


@dataclass
class RetrievedMemory:
    """A hydrated retrieval hit annotated with similarity score and age."""
    vector_id: str
    message_ref: str
    content: str
    score: float
    namespace: str
    created_at: datetime
    age: str


@dataclass
class SceneHints:
    """Keyword and score heuristics a caller can use to shape the reply tone."""
    tech: bool = False
    personal: bool = False
    fuzzy: bool = False


@dataclass
class RetrievalResult:
    memories: List[RetrievedMemory] = field(default_factory=list)
    max_score: float = 0.0
    high_confidence: bool = False
    scene: SceneHints = field(default_factory=SceneHints)


@dataclass
class ToolResult:
    """Outcome of a user-facing tool call."""
    success: bool
    message: str
    data: Optional[Any] = None

    def to_dict(self) -> dict:
        result = asdict(self)
        if self.data is None:
            result.pop('data')
        return result
