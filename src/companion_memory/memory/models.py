"""
Memory data model.

Fragments are plain dataclasses; the conversation context is a structured
record with a closed emotional-tone enum rather than a free-form blob.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .exceptions import ValidationError

MAX_FRAGMENT_LENGTH = 2000
MESSAGE_CONTEXT_PREVIEW = 200


class EmotionalTone(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value: Union[str, "EmotionalTone", None]) -> "EmotionalTone":
        """Parse a tone value, accepting the legacy ``anxious`` tag as negative."""
        if value is None or value == "":
            return cls.NEUTRAL
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized == "anxious":
            return cls.NEGATIVE
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                'emotional_tone',
                f"expected one of {[t.value for t in cls]}",
                value
            ) from None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FragmentContext:
    """Conversation context captured alongside a fragment."""

    timestamp: str = field(default_factory=lambda: utc_now().isoformat())
    message_context: str = ""
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "message_context": self.message_context,
            "emotional_tone": self.emotional_tone.value,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FragmentContext":
        """Build a context from snake_case or legacy camelCase keys."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError('context', "must be an object", data)

        timestamp = data.get("timestamp") or utc_now().isoformat()
        message_context = data.get("message_context", data.get("messageContext", "")) or ""
        tone = data.get("emotional_tone", data.get("emotionalTone"))

        return cls(
            timestamp=str(timestamp),
            message_context=str(message_context),
            emotional_tone=EmotionalTone.parse(tone),
        )

    @classmethod
    def manual_entry(cls) -> "FragmentContext":
        """Context used for fragments created directly by the owner."""
        return cls(message_context="Manual entry")


@dataclass
class MemoryFragment:
    """An atomic personal fact about an owner."""

    owner_id: str
    text: str
    context: FragmentContext = field(default_factory=FragmentContext)
    scope_id: Optional[str] = None
    id: Optional[str] = None
    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "scope_id": self.scope_id,
            "text": self.text,
            "context": self.context.to_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_embedding and self.embedding is not None:
            data["embedding"] = [float(v) for v in self.embedding]
        return data


@dataclass
class RankedFragment:
    """A fragment returned by similarity search with its score."""

    fragment: MemoryFragment
    similarity: float

    @property
    def text(self) -> str:
        return self.fragment.text

    def to_dict(self) -> Dict[str, Any]:
        data = self.fragment.to_dict()
        data["similarity"] = self.similarity
        return data


@dataclass
class RetrievalQuery:
    text: str
    owner_id: str
    scope_id: Optional[str] = None
    similarity_threshold: float = 0.7
    match_count: int = 10

    def validate(self) -> None:
        validate_owner_id(self.owner_id)
        validate_threshold(self.similarity_threshold)
        if self.match_count < 0:
            raise ValidationError('match_count', "must be >= 0", self.match_count)
        if not self.text or not self.text.strip():
            raise ValidationError('text', "query cannot be empty")


@dataclass
class MemoryStats:
    """Derived statistics over an owner's fragments."""

    total_fragments: int = 0
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_fragments": self.total_fragments,
            "oldest_memory": self.oldest_memory.isoformat() if self.oldest_memory else None,
            "newest_memory": self.newest_memory.isoformat() if self.newest_memory else None,
        }


def validate_fragment_text(text: Any, field_name: str = 'text') -> str:
    """Validate fragment text and return it trimmed.

    Raises:
        ValidationError: text is not a string, empty, or longer than 2000 chars
    """
    if not isinstance(text, str):
        raise ValidationError(field_name, "must be a string", text)
    if len(text) > MAX_FRAGMENT_LENGTH:
        raise ValidationError(field_name, f"cannot exceed {MAX_FRAGMENT_LENGTH} characters")
    trimmed = text.strip()
    if not trimmed:
        raise ValidationError(field_name, "cannot be empty")
    return trimmed


def validate_owner_id(owner_id: Any) -> str:
    if not owner_id or not isinstance(owner_id, str):
        raise ValidationError('owner_id', "must be a non-empty string", owner_id)
    return owner_id


def validate_threshold(threshold: Any) -> float:
    if not isinstance(threshold, (int, float)) or not (0.0 <= threshold <= 1.0):
        raise ValidationError('similarity_threshold', "must be between 0.0 and 1.0", threshold)
    return float(threshold)
