"""
Embedding Client

Thin async wrapper over a LangChain ``Embeddings`` implementation. Model calls
are blocking, so they run in a worker thread under a timeout. Every failure
surfaces as a ProviderError.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from langchain_core.embeddings import Embeddings

from ..exceptions import ProviderError
from .retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY, with_retry


class EmbeddingClient:
    """Request/response client for the embedding provider."""

    def __init__(
        self,
        embeddings: Embeddings,
        model_name: str,
        dimension: Optional[int] = None,
        timeout: float = 30.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY
    ) -> None:
        """Initialize embedding client.

        Args:
            embeddings: LangChain embeddings implementation
            model_name: Model identifier recorded on every stored fragment
            dimension: Expected vector length (checked when set)
            timeout: Seconds to wait for a single provider call
            max_attempts: Attempts per call; only timeouts are retried
            retry_base_delay: First backoff delay in seconds, doubled per retry
            retry_max_delay: Cap on a single backoff delay
        """
        self.embeddings = embeddings
        self.model_name = model_name
        self.dimension = dimension
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    @classmethod
    def from_config(cls, embeddings_config: Dict[str, Any]) -> "EmbeddingClient":
        """Build a client backed by a HuggingFace sentence-transformers model."""
        from langchain_huggingface import HuggingFaceEmbeddings

        model_name = embeddings_config.get('model_name', 'sentence-transformers/all-MiniLM-L6-v2')
        embeddings = HuggingFaceEmbeddings(model_name=model_name)
        logging.info(f"Loaded embedding model {model_name}")
        return cls(
            embeddings=embeddings,
            model_name=model_name,
            dimension=embeddings_config.get('dimension'),
            timeout=embeddings_config.get('timeout_seconds', 30.0),
            max_attempts=embeddings_config.get('max_attempts', DEFAULT_MAX_ATTEMPTS),
            retry_base_delay=embeddings_config.get('retry_base_delay_seconds', DEFAULT_BASE_DELAY),
            retry_max_delay=embeddings_config.get('retry_max_delay_seconds', DEFAULT_MAX_DELAY),
        )

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Raises:
            ProviderError: provider failure, timeout or malformed vector
        """
        vector = await self._call('embed_query', text)
        return self._check_vector(vector)

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts in one provider call."""
        if not texts:
            return []
        vectors = await self._call('embed_documents', texts)
        if vectors is None or len(vectors) != len(texts):
            raise ProviderError(
                'embedding',
                f"expected {len(texts)} vectors, got {0 if vectors is None else len(vectors)}"
            )
        return [self._check_vector(v) for v in vectors]

    async def _call(self, method: str, payload: Any) -> Any:
        return await with_retry(
            lambda: self._call_once(method, payload),
            f"Embedding call {method}",
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    async def _call_once(self, method: str, payload: Any) -> Any:
        func = getattr(self.embeddings, method)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            logging.warning(f"Embedding call {method} timed out after {self.timeout}s")
            raise ProviderError('embedding', f"timed out after {self.timeout}s", retryable=True) from None
        except ProviderError:
            raise
        except Exception as e:
            logging.error(f"Embedding call {method} failed: {e}")
            raise ProviderError('embedding', str(e)) from e

    def _check_vector(self, vector: Any) -> List[float]:
        if vector is None or len(vector) == 0:
            raise ProviderError('embedding', "no embedding data returned")
        if self.dimension is not None and len(vector) != self.dimension:
            raise ProviderError(
                'embedding',
                f"dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )
        return [float(v) for v in vector]
