"""
Memory Services Module

Decomposed services behind the MemoryService facade:
- MemoryExtractionService: Message to fragment extraction
- MemoryStorageService: Embedding and persistence
- MemoryRetrievalService: Similarity search, listing and stats
- QueryOptimizer: Search strategy and parameter advice
- MemoryManagementService: Export and bulk deletion
- BackgroundCaptureRunner: Detached post-chat capture tasks
- MemoryService: Facade used by the chat flow and the HTTP surface
"""

from .optimizer import QueryOptimizer, SearchParameters, SearchStrategy
from .extraction import MemoryExtractionService
from .storage import MemoryStorageService
from .retrieval import MemoryRetrievalService
from .management import (
    BulkDeleteFilters,
    BulkDeleteRequest,
    BulkDeleteResult,
    ExportResult,
    MemoryManagementService,
)
from .background import BackgroundCaptureRunner
from .facade import MemoryService

__all__ = [
    'QueryOptimizer',
    'SearchParameters',
    'SearchStrategy',
    'MemoryExtractionService',
    'MemoryStorageService',
    'MemoryRetrievalService',
    'BulkDeleteFilters',
    'BulkDeleteRequest',
    'BulkDeleteResult',
    'ExportResult',
    'MemoryManagementService',
    'BackgroundCaptureRunner',
    'MemoryService',
]
