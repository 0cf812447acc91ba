"""
Core utilities shared by every Brain component.

Provides:
- BrainConfig / load_config: tuning knobs from YAML, .env and environment
- setup_logging / get_logger: JSON or colourised console logging
- The BrainError exception hierarchy
"""

from .config import BrainConfig, load_config
from .errors import (
    BrainError, ConfigurationError, EmbeddingError, BackendUnavailableError,
    EmbeddingBackendError, EmbeddingCountMismatchError, EmbeddingTimeoutError,
    EmbeddingDimensionError, NoteNotFoundError, NoteReadError,
    VectorStoreError, NoteEmbeddingFailedError,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    'BrainConfig',
    'load_config',
    'BrainError',
    'ConfigurationError',
    'EmbeddingError',
    'BackendUnavailableError',
    'EmbeddingBackendError',
    'EmbeddingCountMismatchError',
    'EmbeddingTimeoutError',
    'EmbeddingDimensionError',
    'NoteNotFoundError',
    'NoteReadError',
    'VectorStoreError',
    'NoteEmbeddingFailedError',
    'setup_logging',
    'get_logger',
]
