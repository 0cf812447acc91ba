"""
Embedding Client for the local Ollama backend

Talks to the Ollama HTTP API:
- POST /api/embed  - batch embeddings, one request per call
- GET  /api/tags   - liveness probe and model listing

Every input is prefixed with its task type ("search_document: ..." or
"search_query: ...") so documents and queries embed in different roles.

Usage:
    from brain.embedding.client import OllamaEmbeddingClient, TaskType

    client = OllamaEmbeddingClient(timeout_ms=30_000)
    vectors = client.batch_embed(["first chunk", "second chunk"])
    query_vec = client.batch_embed(["auth flow"], TaskType.SEARCH_QUERY)[0]
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    retry_if_exception_type
)

from ..core.errors import (
    BackendUnavailableError,
    EmbeddingBackendError,
    EmbeddingCountMismatchError,
    EmbeddingTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'http://localhost:11434'
DEFAULT_MODEL = 'nomic-embed-text'
DEFAULT_TIMEOUT_MS = 60_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 600_000
HEALTH_TIMEOUT_SECONDS = 5


class TaskType(Enum):
    """Embedding role prefix."""
    SEARCH_DOCUMENT = 'search_document'
    SEARCH_QUERY = 'search_query'

    def prefix(self, text: str) -> str:
        return f'{self.value}: {text}'


@dataclass
class EmbeddingHealth:
    """Result of the startup health probe."""
    available: bool
    model_present: bool
    message: str

    @property
    def semantic_enabled(self) -> bool:
        return self.available and self.model_present


class OllamaEmbeddingClient:
    """
    HTTP client for Ollama embeddings.

    One call to batch_embed is one HTTP round-trip regardless of how many
    texts it carries. Only connection-level failures are retried; HTTP errors,
    count mismatches and timeouts fail on the first attempt.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_attempts: int = 2,
        session: Optional[requests.Session] = None,
        retry_wait_seconds: float = 0.5
    ):
        """
        Initialize the client.

        Args:
            base_url: Ollama server URL
            model: Default embedding model
            timeout_ms: Deadline for a whole batch_embed call, clamped to [1s, 600s]
            retry_attempts: Total attempts for unreachable-backend errors
            session: Optional requests session (injected in tests)
            retry_wait_seconds: Base of the exponential backoff
        """
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout_ms = max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(timeout_ms)))
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_wait_seconds = retry_wait_seconds
        self.session = session or requests.Session()

        self._lock = threading.Lock()
        self._call_count = 0
        self._error_count = 0
        self._total_latency = 0.0

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> 'OllamaEmbeddingClient':
        """Build a client from a BrainConfig."""
        return cls(
            base_url=config.ollama_base_url,
            model=config.embedding_model,
            timeout_ms=config.embedding_timeout_ms,
            retry_attempts=config.embedding_retry_attempts,
            session=session,
        )

    # =========================================================================
    # Embeddings
    # =========================================================================

    def batch_embed(
        self,
        texts: List[str],
        task_type: TaskType = TaskType.SEARCH_DOCUMENT,
        model: Optional[str] = None
    ) -> List[List[float]]:
        """
        Embed many texts in a single request.

        The timeout is one deadline for the whole call, retries and a slowly
        arriving response body included.

        Args:
            texts: Input texts
            task_type: Role prefix applied to every input
            model: Override the client's default model

        Returns:
            One vector per input, index-aligned with texts

        Raises:
            BackendUnavailableError: Server unreachable after all attempts
            EmbeddingBackendError: Non-2xx status
            EmbeddingCountMismatchError: Response length differs from input length
            EmbeddingTimeoutError: Deadline exceeded
        """
        if not texts:
            return []

        task_type = TaskType(task_type)
        prefixed = [task_type.prefix(t) for t in texts]

        timeout_seconds = self.timeout_ms / 1000
        started = time.monotonic()
        deadline = started + timeout_seconds

        retryer = Retrying(
            stop=stop_after_attempt(self.retry_attempts) | stop_after_delay(timeout_seconds),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=5),
            retry=retry_if_exception_type(BackendUnavailableError),
            reraise=True
        )
        return retryer(self._post_embed, prefixed, model or self.model, started, deadline)

    def embed_one(
        self,
        text: str,
        task_type: TaskType = TaskType.SEARCH_DOCUMENT,
        model: Optional[str] = None
    ) -> List[float]:
        """Embed a single text. Deprecated: prefer batch_embed."""
        return self.batch_embed([text], task_type, model)[0]

    def _send(self, url: str, payload: Dict[str, Any], read_timeout: float) -> requests.Response:
        response = self.session.post(url, json=payload, timeout=read_timeout)
        # Body is read on this worker so the caller's deadline covers it
        response.content
        return response

    def _timed_out(self, started: float, inputs: List[str]) -> EmbeddingTimeoutError:
        elapsed_ms = (time.monotonic() - started) * 1000
        self._record_call(elapsed_ms, success=False)
        return EmbeddingTimeoutError(elapsed_ms, self.timeout_ms, inputs=len(inputs))

    def _post_embed(
        self,
        inputs: List[str],
        model: str,
        started: float,
        deadline: float
    ) -> List[List[float]]:
        url = f'{self.base_url}/api/embed'
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise self._timed_out(started, inputs)

        attempt_start = time.monotonic()
        payload = {'model': model, 'input': inputs, 'truncate': True}

        # requests only bounds each socket read; the worker lets us stop
        # waiting at the deadline even while bytes keep trickling in
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='brain-embed')
        try:
            future = executor.submit(self._send, url, payload, remaining)
            response = future.result(timeout=remaining)
        except FuturesTimeoutError:
            future.cancel()
            raise self._timed_out(started, inputs)
        except requests.Timeout as e:
            raise self._timed_out(started, inputs) from e
        except requests.ConnectionError as e:
            self._record_call((time.monotonic() - attempt_start) * 1000, success=False)
            logger.debug(f'Embedding backend not reachable at {self.base_url}: {e}')
            raise BackendUnavailableError(
                f'Embedding backend not reachable at {self.base_url}',
                base_url=self.base_url
            ) from e
        finally:
            executor.shutdown(wait=False)

        latency_ms = (time.monotonic() - attempt_start) * 1000

        if not response.ok:
            self._record_call(latency_ms, success=False)
            raise EmbeddingBackendError(response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            self._record_call(latency_ms, success=False)
            raise EmbeddingBackendError(
                response.status_code, 'Embedding API returned invalid JSON'
            ) from e

        embeddings = data.get('embeddings') or []
        if len(embeddings) != len(inputs):
            self._record_call(latency_ms, success=False)
            raise EmbeddingCountMismatchError(len(inputs), len(embeddings))

        self._record_call(latency_ms, success=True)
        return embeddings

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> bool:
        """Short-timeout liveness probe. Never raises."""
        try:
            response = self.session.get(
                f'{self.base_url}/api/tags',
                timeout=HEALTH_TIMEOUT_SECONDS
            )
            return response.ok
        except requests.RequestException:
            return False

    def list_models(self) -> List[str]:
        """List model names on the server; empty on any failure."""
        try:
            response = self.session.get(
                f'{self.base_url}/api/tags',
                timeout=HEALTH_TIMEOUT_SECONDS
            )
            response.raise_for_status()
            data = response.json()
            return [m['name'] for m in data.get('models', []) if 'name' in m]
        except (requests.RequestException, ValueError, TypeError):
            return []

    def has_model(self, name: Optional[str] = None) -> bool:
        """Check the model listing, matching tagged names like 'model:latest'."""
        name = name or self.model
        return any(name in m for m in self.list_models())

    def check_health(self) -> EmbeddingHealth:
        """Startup probe: server reachable and configured model pulled."""
        if not self.health():
            logger.warning('Ollama not available. Semantic search disabled. Start Ollama with: ollama serve')
            return EmbeddingHealth(False, False, 'Ollama not available')

        if not self.has_model():
            logger.warning(f'{self.model} model not found. Run: ollama pull {self.model}')
            return EmbeddingHealth(True, False, f'{self.model} model not found')

        logger.info('Ollama health check passed. Semantic search enabled.')
        return EmbeddingHealth(True, True, 'ok')

    # =========================================================================
    # Stats
    # =========================================================================

    def _record_call(self, latency_ms: float, success: bool):
        with self._lock:
            self._call_count += 1
            self._total_latency += latency_ms
            if not success:
                self._error_count += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get call statistics."""
        with self._lock:
            return {
                'calls': self._call_count,
                'errors': self._error_count,
                'avg_latency_ms': (
                    self._total_latency / self._call_count
                    if self._call_count > 0 else 0.0
                ),
            }
