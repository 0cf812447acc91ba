"""
Brain Error Taxonomy

Provides:
- A single BrainError base with structured details
- Embedding backend failures (unavailable, HTTP error, count mismatch, timeout)
- Note store and vector store failures
- NoteEmbeddingFailedError for corpus-level reporting

Usage:
    from brain.core.errors import NoteNotFoundError

    if content is None:
        raise NoteNotFoundError(entity_id=entity_id)
"""

from typing import Optional


# =============================================================================
# Base Exception
# =============================================================================

class BrainError(Exception):
    """Base exception for Brain errors."""

    error_type = 'internal_error'
    message = 'An unexpected error occurred'

    def __init__(self, message=None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = kwargs

    def to_dict(self):
        return {
            'error': self.error_type,
            'message': self.message,
            'details': self.details
        }


class ConfigurationError(BrainError):
    """Configuration issue."""
    error_type = 'configuration_error'
    message = 'Invalid configuration'


# =============================================================================
# Embedding Backend
# =============================================================================

class EmbeddingError(BrainError):
    """Base class for failures talking to the embedding backend."""
    error_type = 'embedding_error'
    message = 'Embedding request failed'


class BackendUnavailableError(EmbeddingError):
    """Embedding service unreachable."""
    error_type = 'backend_unavailable'
    message = 'Embedding backend unavailable'


class EmbeddingBackendError(EmbeddingError):
    """Backend answered a real request with a non-success status."""
    error_type = 'embedding_backend_error'

    def __init__(self, status: int, message: Optional[str] = None, **kwargs):
        super().__init__(message or f'Embedding API error: {status}', status=status, **kwargs)
        self.status = status


class EmbeddingCountMismatchError(EmbeddingError):
    """Backend returned a different number of vectors than inputs."""
    error_type = 'embedding_count_mismatch'

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f'Embedding count mismatch: expected {expected}, got {actual}',
            expected=expected,
            actual=actual
        )
        self.expected = expected
        self.actual = actual


class EmbeddingTimeoutError(EmbeddingError):
    """Request deadline exceeded."""
    error_type = 'embedding_timeout'

    def __init__(self, elapsed_ms: float, timeout_ms: int, **kwargs):
        super().__init__(
            f'Embedding request timed out after {elapsed_ms:.0f}ms (limit {timeout_ms}ms)',
            elapsed_ms=round(elapsed_ms, 1),
            timeout_ms=timeout_ms,
            **kwargs
        )
        self.elapsed_ms = elapsed_ms
        self.timeout_ms = timeout_ms


class EmbeddingDimensionError(BrainError):
    """Vector length does not match the store dimension."""
    error_type = 'embedding_dimension_error'

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        super().__init__(
            message or f'Expected {expected} dimensions, got {actual}',
            expected=expected,
            actual=actual
        )
        self.expected = expected
        self.actual = actual


# =============================================================================
# Note Store
# =============================================================================

class NoteNotFoundError(BrainError):
    """Note does not exist."""
    error_type = 'note_not_found'

    def __init__(self, entity_id: str, message: Optional[str] = None):
        super().__init__(message or f'Note not found: {entity_id}', entity_id=entity_id)
        self.entity_id = entity_id


class NoteReadError(BrainError):
    """Note exists but could not be read or parsed."""
    error_type = 'note_read_error'

    def __init__(self, entity_id: str, message: Optional[str] = None):
        super().__init__(message or f'Failed to read note: {entity_id}', entity_id=entity_id)
        self.entity_id = entity_id


# =============================================================================
# Vector Store / Pipeline
# =============================================================================

class VectorStoreError(BrainError):
    """Vector store schema or I/O failure."""
    error_type = 'vector_store_error'
    message = 'Vector store operation failed'


class NoteEmbeddingFailedError(BrainError):
    """Wraps any failure while embedding one note."""
    error_type = 'note_embedding_failed'

    def __init__(self, entity_id: str, cause: Exception):
        super().__init__(
            f'{entity_id}: {cause}',
            entity_id=entity_id,
            cause=type(cause).__name__
        )
        self.entity_id = entity_id
        self.cause = cause
