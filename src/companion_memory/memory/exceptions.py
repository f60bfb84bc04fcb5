"""
Custom exceptions for the memory system.

These exceptions separate provider failures (embedding / LLM), persistence
failures and input validation problems so each caller can apply its own
failure policy: the read path degrades, explicit writes propagate.
"""

from typing import Any, Dict, List, Optional, Tuple


class MemorySystemError(Exception):
    """Base exception for all memory system errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProviderError(MemorySystemError):
    """Embedding or LLM provider failure, including timeouts."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        details: dict = None
    ):
        full_message = f"{provider} provider error: {message}"
        if status_code is not None:
            full_message += f" (status {status_code})"
        data = {'provider': provider, 'status_code': status_code, 'retryable': retryable}
        data.update(details or {})
        super().__init__(full_message, data)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class PersistenceError(MemorySystemError):
    """Error reading from or writing to the fragment store."""

    def __init__(self, operation: str, cause: str = None, details: dict = None):
        message = f"Storage error during {operation}"
        if cause:
            message += f": {cause}"
        data = {'operation': operation, 'cause': cause}
        data.update(details or {})
        super().__init__(message, data)
        self.operation = operation


class BatchStoreError(PersistenceError):
    """One or more chunks of a batch insert failed.

    Chunks that were committed before or after the failure stay persisted;
    their ids are available in ``stored_ids``.
    """

    def __init__(self, stored_ids: List[str], failed_chunks: List[Tuple[int, Exception]]):
        causes = "; ".join(f"chunk@{start}: {error}" for start, error in failed_chunks)
        super().__init__(
            "batch_store",
            f"{len(failed_chunks)} chunk(s) failed ({causes})",
            {'stored_count': len(stored_ids), 'failed_chunk_starts': [s for s, _ in failed_chunks]}
        )
        self.stored_ids = stored_ids
        self.failed_chunks = failed_chunks


class ValidationError(MemorySystemError):
    """Bad input shape, size or format; raised before touching storage."""

    def __init__(self, field: str, message: str, value: Any = None):
        data: Dict[str, Any] = {'field': field}
        if value is not None:
            data['provided_value'] = str(value)[:100]
        super().__init__(f"Invalid '{field}': {message}", data)
        self.field = field


class ConfigurationError(MemorySystemError):
    """Error in system configuration."""
    pass
