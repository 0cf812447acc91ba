"""
Brain Configuration

Process-wide tuning knobs for the retrieval core, loaded from (in order):
1. Dataclass defaults
2. An optional YAML file (a top-level `brain:` section or a flat mapping)
3. Environment variables `BRAIN_<KNOB>` (a `.env` file is honoured)

Bounded integers are clamped into their documented ranges.

Usage:
    from brain.core.config import load_config

    config = load_config('config/brain.yaml')
    print(config.embedding_concurrency)
"""

import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError


# (min, max) for every clamped knob
BOUNDS = {
    'embedding_concurrency': (1, 16),
    'embedding_timeout_ms': (1_000, 600_000),
    'embedding_retry_attempts': (1, 5),
    'content_cache_size': (1, 10_000),
}

ENV_PREFIX = 'BRAIN_'


@dataclass
class BrainConfig:
    """
    Tuning knobs for the retrieval core.

    Attributes:
        ollama_base_url: Embedding backend base URL
        embedding_model: Backend model name
        embedding_dimension: Vector length D
        embedding_concurrency: Max notes embedded at once (1-16)
        embedding_timeout_ms: Per-batch request deadline (1s-600s)
        embedding_retry_attempts: Attempts for connection-level failures
        chunk_target_size: Target chunk length in characters
        chunk_overlap: Characters repeated between consecutive chunks
        full_content_char_limit: Max characters of note body attached to results
        search_default_limit: Default result count
        search_default_threshold: Default minimum similarity
        content_cache_size: Max entries in the full-content cache
        vector_db_path: SQLite file holding the vector table
        log_level: Logging level name
        log_json: Emit JSON log lines
    """
    ollama_base_url: str = 'http://localhost:11434'
    embedding_model: str = 'nomic-embed-text'
    embedding_dimension: int = 768
    embedding_concurrency: int = 4
    embedding_timeout_ms: int = 60_000
    embedding_retry_attempts: int = 2
    chunk_target_size: int = 2000
    chunk_overlap: int = 200
    full_content_char_limit: int = 5000
    search_default_limit: int = 10
    search_default_threshold: float = 0.7
    content_cache_size: int = 256
    vector_db_path: str = '~/.brain/vectors.db'
    log_level: str = 'INFO'
    log_json: bool = False

    def __post_init__(self):
        self.clamp()

    def clamp(self) -> 'BrainConfig':
        """Clamp bounded knobs into range and sanity-check the rest."""
        for name, (low, high) in BOUNDS.items():
            value = int(getattr(self, name))
            setattr(self, name, max(low, min(high, value)))

        if self.chunk_target_size < 1:
            raise ConfigurationError('chunk_target_size must be positive',
                                     chunk_target_size=self.chunk_target_size)
        if not 0 <= self.chunk_overlap < self.chunk_target_size:
            raise ConfigurationError('chunk_overlap must be in [0, chunk_target_size)',
                                     chunk_overlap=self.chunk_overlap)
        if not 0.0 <= self.search_default_threshold <= 1.0:
            raise ConfigurationError('search_default_threshold must be in [0, 1]',
                                     threshold=self.search_default_threshold)
        return self

    @property
    def db_path(self) -> Path:
        """Expanded vector database path."""
        return Path(self.vector_db_path).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Loading
# =============================================================================

def _coerce(name: str, raw: Any, target: Any) -> Any:
    """Convert a raw YAML/env value to the type of the dataclass default."""
    try:
        if isinstance(target, bool):
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ('1', 'true', 'yes', 'on')
        if isinstance(target, int):
            return int(raw)
        if isinstance(target, float):
            return float(raw)
        return str(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f'Invalid value for {name}: {raw!r}', knob=name)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f'Config file not found: {path}', path=str(path))

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f'Config file must contain a mapping: {path}', path=str(path))

    return data.get('brain', data)


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None
) -> BrainConfig:
    """
    Build a BrainConfig from defaults, YAML and environment.

    Args:
        path: Optional YAML config file
        env: Environment mapping (defaults to os.environ after load_dotenv())

    Returns:
        Clamped BrainConfig

    Raises:
        ConfigurationError: Missing file or unparseable value
    """
    if env is None:
        load_dotenv()
        env = os.environ

    defaults = BrainConfig()
    knobs = {f.name for f in fields(BrainConfig)}
    values: Dict[str, Any] = {}

    if path is not None:
        for key, raw in _read_yaml(Path(path)).items():
            if key in knobs:
                values[key] = raw

    for f in fields(BrainConfig):
        env_key = ENV_PREFIX + f.name.upper()
        if env_key in env:
            values[f.name] = env[env_key]

    coerced = {
        name: _coerce(name, raw, getattr(defaults, name))
        for name, raw in values.items()
    }

    return BrainConfig(**coerced)
