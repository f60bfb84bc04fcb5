from .app import create_app, get_owner_id
from .errors import ErrorCode, create_error_response, create_not_found_error
from .models import (
    CreateMemoryRequest, UpdateMemoryRequest, CaptureRequest,
    ChatContextRequest, BulkDeleteBody
)

__all__ = [
    'create_app', 'get_owner_id',
    'ErrorCode', 'create_error_response', 'create_not_found_error',
    'CreateMemoryRequest', 'UpdateMemoryRequest', 'CaptureRequest',
    'ChatContextRequest', 'BulkDeleteBody'
]
