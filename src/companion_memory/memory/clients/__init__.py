from .embedding import EmbeddingClient
from .llm import ChatCompletionClient
from .retry import with_retry

__all__ = ['EmbeddingClient', 'ChatCompletionClient', 'with_retry']
