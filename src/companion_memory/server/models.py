from pydantic import BaseModel, Field
from typing import Dict, Any, Optional, Union


class CreateMemoryRequest(BaseModel):
    """Manual memory creation body."""
    text: str
    context: Optional[Dict[str, Any]] = None
    scope_id: Optional[str] = None


class UpdateMemoryRequest(BaseModel):
    text: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class CaptureRequest(BaseModel):
    """Post-chat capture body; processed in the background."""
    text: str
    context: Optional[Union[str, Dict[str, Any]]] = None
    scope_id: Optional[str] = None
    extraction_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ChatContextRequest(BaseModel):
    query: str
    max_memories: int = Field(default=5, ge=1, le=50)
    scope_id: Optional[str] = None


class BulkDeleteBody(BaseModel):
    action: str
    filters: Optional[Dict[str, Any]] = None
