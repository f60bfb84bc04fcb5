"""
Memory Management Service

Owner-facing data management:
- Export to JSON or CSV (optionally with embeddings)
- Bulk deletion, either everything or a filtered subset
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import ValidationError
from ..models import EmotionalTone, MemoryFragment, utc_now, validate_owner_id
from .retrieval import MemoryRetrievalService
from .storage import MemoryStorageService

EXPORT_FORMATS = ('json', 'csv')
CSV_HEADERS = [
    'ID',
    'Fragment Text',
    'Created At',
    'Updated At',
    'Conversation Timestamp',
    'Message Context',
    'Emotional Tone',
]
CSV_EMBEDDING_HEADER = 'Embedding (JSON)'
EMPTY_CSV_EXPORT = 'No memories to export'

BULK_DELETE_ACTIONS = ('delete_all', 'delete_filtered')


@dataclass
class ExportResult:
    content: str
    media_type: str
    filename: str


@dataclass
class BulkDeleteFilters:
    """Filters for ``delete_filtered``; all given filters must match."""

    emotional_tone: Optional[EmotionalTone] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    text_contains: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.emotional_tone is None
            and self.start is None
            and self.end is None
            and not self.text_contains
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BulkDeleteFilters":
        """Parse filters from snake_case or camelCase keys."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError('filters', "must be an object", data)

        tone = data.get('emotional_tone', data.get('emotionalTone'))
        date_range = data.get('date_range', data.get('dateRange')) or {}
        if not isinstance(date_range, dict):
            raise ValidationError('date_range', "must be an object with start/end", date_range)

        text_contains = data.get('text_contains', data.get('textContains'))
        return cls(
            emotional_tone=EmotionalTone.parse(tone) if tone else None,
            start=_parse_datetime(date_range.get('start'), 'date_range.start'),
            end=_parse_datetime(date_range.get('end'), 'date_range.end'),
            text_contains=str(text_contains) if text_contains else None,
        )

    def matches(self, fragment: MemoryFragment) -> bool:
        if self.start is not None or self.end is not None:
            if fragment.created_at is None:
                return False
            start = self.start or datetime.fromtimestamp(0, tz=timezone.utc)
            end = self.end or utc_now()
            if not (start <= fragment.created_at <= end):
                return False
        if self.emotional_tone is not None and fragment.context.emotional_tone != self.emotional_tone:
            return False
        if self.text_contains and self.text_contains.lower() not in fragment.text.lower():
            return False
        return True


@dataclass
class BulkDeleteRequest:
    action: str
    filters: BulkDeleteFilters = field(default_factory=BulkDeleteFilters)

    def validate(self) -> None:
        if self.action not in BULK_DELETE_ACTIONS:
            raise ValidationError('action', f"must be one of {list(BULK_DELETE_ACTIONS)}", self.action)
        if self.action == 'delete_filtered' and self.filters.is_empty:
            raise ValidationError('filters', "at least one filter is required for filtered deletion")


@dataclass
class BulkDeleteResult:
    deleted_count: int
    total_filtered: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'deleted_count': self.deleted_count,
            'total_filtered': self.total_filtered,
        }


def _parse_datetime(value: Any, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(field_name, "must be an ISO-8601 date or datetime", value) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ''


class MemoryManagementService:
    """Service responsible for exporting and bulk-deleting an owner's memories."""

    def __init__(
        self,
        retrieval_service: MemoryRetrievalService,
        storage_service: MemoryStorageService,
        config: Optional[Dict[str, Any]] = None
    ) -> None:
        self.retrieval_service = retrieval_service
        self.storage_service = storage_service
        self.config = config or {}

    async def export(
        self,
        owner_id: str,
        fmt: str = 'json',
        include_embeddings: bool = False,
        scope_id: Optional[str] = None
    ) -> ExportResult:
        """Export every fragment in the owner's scope, oldest first.

        Args:
            owner_id: Owner whose fragments are exported
            fmt: 'json' or 'csv'
            include_embeddings: Add embedding vectors to the export
            scope_id: Optional secondary scope

        Returns:
            ExportResult with the body, media type and a dated filename
        """
        validate_owner_id(owner_id)
        if fmt not in EXPORT_FORMATS:
            raise ValidationError('format', 'must be either "json" or "csv"', fmt)

        memories = await self.retrieval_service.list(
            owner_id,
            limit=0,
            order_by='created_at',
            order_direction='asc',
            scope_id=scope_id,
            include_embeddings=include_embeddings,
        )
        export_date = utc_now()
        filename = f"memories-export-{export_date.date().isoformat()}.{fmt}"

        if fmt == 'csv':
            content = self.to_csv(memories, include_embeddings)
            media_type = 'text/csv'
        else:
            stats = await self.retrieval_service.stats(owner_id, scope_id)
            content = json.dumps({
                'export_info': {
                    'owner_id': owner_id,
                    'export_date': export_date.isoformat(),
                    'total_memories': len(memories),
                    'format': fmt,
                    'include_embeddings': include_embeddings,
                },
                'stats': stats.to_dict(),
                'memories': [m.to_dict(include_embedding=include_embeddings) for m in memories],
            }, indent=2)
            media_type = 'application/json'

        logging.info(f"Exported {len(memories)} memories for owner {owner_id} as {fmt}")
        return ExportResult(content=content, media_type=media_type, filename=filename)

    @staticmethod
    def to_csv(memories: List[MemoryFragment], include_embeddings: bool = False) -> str:
        """Render fragments as CSV; free-text columns are always quoted."""
        if not memories:
            return EMPTY_CSV_EXPORT

        headers = list(CSV_HEADERS)
        if include_embeddings:
            headers.append(CSV_EMBEDDING_HEADER)

        rows = [','.join(headers)]
        for memory in memories:
            row = [
                memory.id or '',
                _quote(memory.text or ''),
                _iso(memory.created_at),
                _iso(memory.updated_at),
                memory.context.timestamp or '',
                _quote(memory.context.message_context or ''),
                memory.context.emotional_tone.value,
            ]
            if include_embeddings:
                row.append(_quote(json.dumps(memory.embedding)) if memory.embedding else '')
            rows.append(','.join(row))
        return '\n'.join(rows)

    async def bulk_delete(
        self,
        owner_id: str,
        request: BulkDeleteRequest,
        scope_id: Optional[str] = None
    ) -> BulkDeleteResult:
        """Delete all of the owner's fragments or the subset matching every filter."""
        validate_owner_id(owner_id)
        request.validate()

        if request.action == 'delete_all':
            deleted = await self.storage_service.delete_all(owner_id, scope_id)
            if deleted == 0:
                return BulkDeleteResult(0, 0, "No memories to delete")
            return BulkDeleteResult(deleted, deleted, f"Successfully deleted all {deleted} memory fragments")

        memories = await self.retrieval_service.list(
            owner_id, limit=0, order_by='created_at', order_direction='asc', scope_id=scope_id
        )
        matched = [m for m in memories if request.filters.matches(m)]
        if not matched:
            return BulkDeleteResult(0, 0, "No memories match the specified filters")

        deleted = await self.storage_service.delete_many([m.id for m in matched], owner_id)
        return BulkDeleteResult(
            deleted,
            len(matched),
            f"Successfully deleted {deleted} of {len(matched)} filtered memory fragments",
        )
