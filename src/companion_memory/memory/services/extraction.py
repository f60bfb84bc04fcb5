"""
Memory Extraction Service

Turns a raw user message into candidate memory fragments:
- Sends the message to a chat-completion model with an extraction prompt
- Parses the JSON array of fact strings it returns
- Tags every fragment with the emotional tone of the source message

Extraction sits on the read side of the failure policy: it never raises.
"""

import re
import json
import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from ..clients.llm import ChatCompletionClient
from ..exceptions import MemorySystemError, ValidationError
from ..models import (
    MAX_FRAGMENT_LENGTH,
    MESSAGE_CONTEXT_PREVIEW,
    EmotionalTone,
    FragmentContext,
    MemoryFragment,
    utc_now,
    validate_owner_id,
)

EXTRACTION_PROMPT = """
You extract durable personal facts about the user from a single chat message so
they can be remembered in later conversations.

Look for:
- Relationships (family, friends, colleagues, pets)
- Significant experiences and life events
- Preferences, hobbies, interests and dislikes
- Goals, fears and values
- Routines, places, work and health details the user would expect you to remember

Rules:
1. Extract every meaningful personal detail, including small ones
2. Each fragment must be a complete, standalone sentence about "User ..."
3. Keep names, places and concrete details
4. Ignore small talk and transient states
5. If nothing is worth remembering, return an empty array

Respond with a JSON array of strings and nothing else.

Examples:
Input: "I love hiking with my dog Max every weekend. He's a golden retriever."
Output: ["User loves hiking every weekend", "User has a golden retriever named Max"]

Input: "It's raining today and I'm feeling tired."
Output: []

Input: "My sister Sarah is getting married next month and I'm nervous about my speech."
Output: ["User has a sister named Sarah who is getting married next month", "User is nervous about giving a speech at Sarah's wedding"]
"""

POSITIVE_CUES = frozenset({
    'love', 'loves', 'loved', 'loving', 'happy', 'excited', 'exciting',
    'enjoy', 'enjoys', 'enjoyed', 'glad', 'thrilled', 'proud', 'grateful',
})
NEGATIVE_CUES = frozenset({
    'sad', 'worried', 'worry', 'upset', 'nervous', 'anxious', 'scared',
    'afraid', 'hate', 'hates', 'angry', 'lonely', 'stressed', 'depressed',
})

_WORD_RE = re.compile(r"[a-z']+")
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

BATCH_SIZE = 5
BATCH_PAUSE_SECONDS = 0.1


def detect_emotional_tone(message: str) -> EmotionalTone:
    """Classify a message by lexical cues; positive cues win over negative."""
    words = set(_WORD_RE.findall(message.lower()))
    if words & POSITIVE_CUES:
        return EmotionalTone.POSITIVE
    if words & NEGATIVE_CUES:
        return EmotionalTone.NEGATIVE
    return EmotionalTone.NEUTRAL


def render_context(context: Union[str, Dict[str, Any], None]) -> str:
    if not context:
        return ""
    if isinstance(context, dict):
        return "\n".join(f"{key}: {value}" for key, value in context.items())
    return str(context)


def parse_fragment_array(response: str) -> List[str]:
    """Parse the model's JSON array of fragment strings.

    Raises:
        ValueError: response is not a JSON array made only of strings
    """
    body = response.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1)

    parsed = json.loads(body)
    if not isinstance(parsed, list):
        raise ValueError(f"expected a JSON array, got {type(parsed).__name__}")
    if not all(isinstance(item, str) for item in parsed):
        raise ValueError("array contains non-string elements")
    return parsed


class MemoryExtractionService:
    """Service responsible for turning messages into candidate fragments."""

    def __init__(self, llm_client: ChatCompletionClient, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize extraction service.

        Args:
            llm_client: Chat-completion client used for extraction
            config: Configuration dictionary (max_tokens, default_temperature,
                batch_size, batch_pause_seconds)
        """
        self.llm_client = llm_client
        self.config = config or {}
        self.max_tokens = self.config.get('max_tokens', 800)
        self.default_temperature = self.config.get('default_temperature', 0.3)
        self.batch_size = self.config.get('batch_size', BATCH_SIZE)
        self.batch_pause_seconds = self.config.get('batch_pause_seconds', BATCH_PAUSE_SECONDS)

    def _temperature(self, extraction_threshold: Optional[float]) -> float:
        # A lower threshold asks for more memories, so sample more freely
        if extraction_threshold:
            return max(0.1, extraction_threshold - 0.4)
        return self.default_temperature

    async def extract(
        self,
        text: str,
        owner_id: str,
        context: Union[str, Dict[str, Any], None] = None,
        scope_id: Optional[str] = None,
        extraction_threshold: Optional[float] = None
    ) -> List[MemoryFragment]:
        """Extract memory fragments from a message.

        Args:
            text: The user message
            owner_id: Owner the fragments will belong to
            context: Optional conversation context, string or mapping
            scope_id: Optional secondary scope (e.g. avatar)
            extraction_threshold: Optional 0-1 value tuning sampling temperature

        Returns:
            Unpersisted fragments; empty on any failure
        """
        try:
            validate_owner_id(owner_id)
            if not isinstance(text, str) or not text.strip():
                raise ValidationError('text', "message cannot be empty")

            rendered_context = render_context(context)
            user_content = text
            if rendered_context:
                user_content += f"\n\nCONVERSATION CONTEXT:\n{rendered_context}"

            response = await self.llm_client.complete(
                EXTRACTION_PROMPT,
                user_content,
                temperature=self._temperature(extraction_threshold),
                max_tokens=self.max_tokens,
            )
            raw_fragments = parse_fragment_array(response)

        except (MemorySystemError, ValueError) as e:
            logging.warning(f"Memory extraction failed for owner {owner_id}: {e}")
            return []
        except Exception as e:
            logging.error(f"Unexpected error during memory extraction for owner {owner_id}: {e}")
            return []

        shared_context = FragmentContext(
            timestamp=utc_now().isoformat(),
            message_context=rendered_context or text[:MESSAGE_CONTEXT_PREVIEW],
            emotional_tone=detect_emotional_tone(text),
        )

        fragments = []
        for raw in raw_fragments:
            fragment_text = raw.strip()
            if not fragment_text:
                continue
            if len(fragment_text) > MAX_FRAGMENT_LENGTH:
                logging.warning(f"Dropping extracted fragment of {len(fragment_text)} chars (over {MAX_FRAGMENT_LENGTH})")
                continue
            fragments.append(MemoryFragment(
                owner_id=owner_id,
                scope_id=scope_id,
                text=fragment_text,
                context=FragmentContext(
                    timestamp=shared_context.timestamp,
                    message_context=shared_context.message_context,
                    emotional_tone=shared_context.emotional_tone,
                ),
            ))

        logging.info(f"Extracted {len(fragments)} memory fragments for owner {owner_id}")
        return fragments

    async def batch_extract(
        self,
        items: List[Dict[str, Any]],
        owner_id: str,
        scope_id: Optional[str] = None
    ) -> List[MemoryFragment]:
        """Extract from several messages in groups, pausing between groups.

        Args:
            items: Dicts with ``text`` and optional ``context``
            owner_id: Owner for every fragment
            scope_id: Optional secondary scope

        Returns:
            All fragments in item order; a failing item contributes nothing
        """
        all_fragments: List[MemoryFragment] = []

        for start in range(0, len(items), self.batch_size):
            group = items[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self.extract(item.get('text', ''), owner_id, item.get('context'), scope_id) for item in group),
                return_exceptions=True
            )
            for offset, result in enumerate(results):
                if isinstance(result, BaseException):
                    logging.error(f"Batch extraction item {start + offset} failed: {result}")
                    continue
                all_fragments.extend(result)

            if start + self.batch_size < len(items):
                await asyncio.sleep(self.batch_pause_seconds)

        return all_fragments
