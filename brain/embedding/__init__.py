"""
Embedding layer for Brain.

Provides:
- OllamaEmbeddingClient: batch embeddings over the Ollama HTTP API
- chunk_text: overlapping, boundary-aware note chunking
- EmbeddingPipeline: keeps the vector store in line with the notes
- EmbeddingQueue: persistent retry queue for failed refreshes
"""

from .client import OllamaEmbeddingClient, TaskType, EmbeddingHealth
from .chunking import ChunkSpec, chunk_text, requires_chunking, get_chunk_config
from .queue import EmbeddingQueue, QueueItem
from .pipeline import EmbeddingPipeline, EmbedProjectResult

__all__ = [
    'OllamaEmbeddingClient',
    'TaskType',
    'EmbeddingHealth',
    'ChunkSpec',
    'chunk_text',
    'requires_chunking',
    'get_chunk_config',
    'EmbeddingQueue',
    'QueueItem',
    'EmbeddingPipeline',
    'EmbedProjectResult',
]
