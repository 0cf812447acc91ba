"""
Embedding Pipeline

Keeps the vector store consistent with the note corpus:
- embed_note: chunk one note, embed all chunks in one batch, replace its rows
- embed_project: corpus-wide generation with a concurrency cap and
  settle-all semantics (one bad note never stops the rest)
- trigger_refresh: fire-and-forget re-embed on edit, coalesced per note
- catch_up: background sweep for notes that have no rows, single-flight
  per project
- process_queue: retry notes whose refresh failed while the backend was down

The pipeline is the only writer to the vector store.

Usage:
    pipeline = EmbeddingPipeline(client, store, notes, config=config)

    result = await pipeline.embed_project(force=True)
    print(result.to_dict())

    pipeline.trigger_refresh('features/auth', new_content)
    pipeline.catch_up(project='brain')
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import psutil

from ..core.config import BOUNDS, BrainConfig
from ..core.errors import (
    NoteEmbeddingFailedError,
    NoteNotFoundError,
    NoteReadError,
    VectorStoreError,
)
from ..database.vector_store import ChunkRow, VectorStore
from ..notes.store import NoteStore
from .chunking import chunk_text
from .client import TaskType
from .queue import BASE_DELAY_SECONDS, MAX_RETRIES, EmbeddingQueue

logger = logging.getLogger(__name__)

MEMORY_LOG_INTERVAL = 100
MAX_ERROR_MESSAGES = 50

ProgressCallback = Callable[[int, int], None]


@dataclass
class EmbedProjectResult:
    """Outcome of a corpus-wide embedding run."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    total_chunks_generated: int = 0
    error_messages: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'total': self.total,
            'total_chunks_generated': self.total_chunks_generated,
            'error_messages': list(self.error_messages),
        }


def _rss_mb() -> float:
    return round(psutil.Process().memory_info().rss / 1024 / 1024, 1)


class EmbeddingPipeline:
    """
    Chunk + embed + store, for single notes and whole corpora.

    Corpus runs and catch-up share one semaphore of `concurrency` slots, the
    backend's typical number of parallel inference slots. Per-edit refreshes
    are not capped globally but run at most one at a time per note.
    """

    def __init__(
        self,
        client,
        store: VectorStore,
        notes: NoteStore,
        config: Optional[BrainConfig] = None,
        queue: Optional[EmbeddingQueue] = None,
        concurrency: Optional[int] = None,
        retry_base_delay: float = BASE_DELAY_SECONDS
    ):
        """
        Initialize the pipeline.

        Args:
            client: Embedding client exposing batch_embed(texts, task_type)
            store: Vector store (sole writer: this pipeline)
            notes: Note store used by corpus runs and catch-up
            config: Tuning knobs (defaults when omitted)
            queue: Optional retry queue for failed refreshes
            concurrency: Override config.embedding_concurrency
            retry_base_delay: Backoff base in seconds for process_queue
        """
        self.config = config or BrainConfig()
        self.client = client
        self.store = store
        self.notes = notes
        self.queue = queue
        self.retry_base_delay = retry_base_delay

        low, high = BOUNDS['embedding_concurrency']
        requested = concurrency if concurrency is not None else self.config.embedding_concurrency
        self.concurrency = max(low, min(high, int(requested)))

        self.target_size = self.config.chunk_target_size
        self.overlap = self.config.chunk_overlap

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop = None
        self._active = 0
        self.peak_active = 0

        self._pending_content: Dict[str, str] = {}
        self._refreshes: Dict[str, asyncio.Task] = {}
        self._catch_ups: Dict[Optional[str], asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    def _get_semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # =========================================================================
    # Single Note
    # =========================================================================

    async def embed_note(self, entity_id: str, content: str) -> int:
        """
        Chunk, embed and store one note.

        Args:
            entity_id: Note identifier
            content: Full note body

        Returns:
            Number of chunks stored

        Raises:
            NoteEmbeddingFailedError: The embedding client failed; no rows written
            VectorStoreError: The store rejected the write; previous rows intact
        """
        chunks = chunk_text(content, self.target_size, self.overlap)
        start_time = time.time()

        try:
            vectors = await asyncio.to_thread(
                self.client.batch_embed,
                [c.text for c in chunks],
                TaskType.SEARCH_DOCUMENT
            )
        except Exception as e:
            raise NoteEmbeddingFailedError(entity_id, e) from e

        rows = [
            ChunkRow(
                chunk_index=chunk.index,
                total_chunks=len(chunks),
                chunk_start=chunk.start,
                chunk_end=chunk.end,
                chunk_text=chunk.text,
                embedding=vector,
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        stored = await asyncio.to_thread(self.store.upsert_chunks, entity_id, rows)

        logger.debug(
            f'Embedding stored for note: {entity_id} ({stored} chunks)',
            extra={
                'entity_id': entity_id,
                'chunks': stored,
                'duration_ms': round((time.time() - start_time) * 1000, 1),
            }
        )
        return stored

    # =========================================================================
    # Corpus Generation
    # =========================================================================

    async def embed_project(
        self,
        limit: int = 0,
        force: bool = False,
        project: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        entity_ids: Optional[Iterable[str]] = None
    ) -> EmbedProjectResult:
        """
        Embed every note (or every unembedded note) of a project.

        Args:
            limit: Max notes to process; 0 or negative for all
            force: Re-embed notes that already have rows
            project: Project passed through to the note store
            on_progress: Called with (completed, total) after each note
            entity_ids: Restrict the run to these notes

        Returns:
            EmbedProjectResult; per-note failures are recorded, never raised
        """
        notes = list(dict.fromkeys(await self.notes.list_notes(project)))
        if entity_ids is not None:
            wanted = set(entity_ids)
            notes = [n for n in notes if n in wanted]

        if force:
            to_process = notes
        else:
            embedded = set(await asyncio.to_thread(self.store.distinct_entities))
            to_process = [n for n in notes if n not in embedded]

        batch = to_process[:limit] if limit > 0 else to_process

        result = EmbedProjectResult(total=len(notes), skipped=len(notes) - len(batch))

        logger.info(
            'Starting batch embedding generation',
            extra={
                'project': project,
                'force': force,
                'to_process': len(batch),
                'skipped': result.skipped,
                'concurrency': self.concurrency,
            }
        )

        if not batch:
            return result

        semaphore = self._get_semaphore()
        completed = 0
        start_time = time.time()

        async def process(entity_id: str):
            nonlocal completed

            async with semaphore:
                self._active += 1
                self.peak_active = max(self.peak_active, self._active)
                try:
                    note = await self.notes.read_note(entity_id, project)
                    chunks = await self.embed_note(entity_id, note.content)
                    result.processed += 1
                    result.total_chunks_generated += chunks
                except Exception as e:
                    result.failed += 1
                    message = str(e) if isinstance(e, NoteEmbeddingFailedError) else f'{entity_id}: {e}'
                    if len(result.error_messages) < MAX_ERROR_MESSAGES:
                        result.error_messages.append(message)
                    level = logging.ERROR if isinstance(e, VectorStoreError) else logging.WARNING
                    logger.log(level, f'Failed to process note: {message}', extra={'entity_id': entity_id})
                finally:
                    self._active -= 1

            completed += 1
            if on_progress is not None:
                on_progress(completed, len(batch))
            if completed % MEMORY_LOG_INTERVAL == 0:
                logger.info(
                    'Embedding progress',
                    extra={'processed': completed, 'total': len(batch), 'rss_mb': _rss_mb()}
                )

        tasks = [self._track(asyncio.ensure_future(process(e))) for e in batch]

        # A cancelled caller does not cancel notes already scheduled
        await asyncio.shield(asyncio.gather(*tasks))

        logger.info(
            'Batch embedding complete',
            extra={
                'project': project,
                'processed': result.processed,
                'failed': result.failed,
                'total_chunks': result.total_chunks_generated,
                'duration_ms': round((time.time() - start_time) * 1000, 1),
            }
        )
        return result

    # =========================================================================
    # Per-Edit Refresh
    # =========================================================================

    def trigger_refresh(self, entity_id: str, new_content: str) -> asyncio.Task:
        """
        Re-embed a note in the background (fire-and-forget).

        While a refresh for the same note is in flight, further calls only
        replace the pending content; the running worker embeds the latest
        content once it finishes. Errors are logged, never raised.

        Must be called from a running event loop.

        Returns:
            The refresh task for this note (callers need not await it)
        """
        self._pending_content[entity_id] = new_content

        running = self._refreshes.get(entity_id)
        if running is not None and not running.done():
            logger.debug(f'Coalesced refresh for {entity_id}', extra={'entity_id': entity_id})
            return running

        task = asyncio.get_running_loop().create_task(self._refresh_worker(entity_id))
        self._refreshes[entity_id] = task
        return self._track(task)

    async def _refresh_worker(self, entity_id: str):
        try:
            while entity_id in self._pending_content:
                content = self._pending_content.pop(entity_id)
                try:
                    await self.embed_note(entity_id, content)
                except NoteEmbeddingFailedError as e:
                    logger.warning(f'Embedding failed for note {entity_id}: {e.cause}',
                                   extra={'entity_id': entity_id})
                    if self.queue is not None:
                        await asyncio.to_thread(self.queue.enqueue, entity_id)
                except Exception as e:
                    logger.warning(f'Embedding refresh failed for note {entity_id}: {e}',
                                   extra={'entity_id': entity_id})
        finally:
            if self._refreshes.get(entity_id) is asyncio.current_task():
                del self._refreshes[entity_id]

    # =========================================================================
    # Catch-up
    # =========================================================================

    async def missing_entities(self, project: Optional[str] = None) -> List[str]:
        """Notes that have no rows in the vector store."""
        notes = list(dict.fromkeys(await self.notes.list_notes(project)))
        embedded = set(await asyncio.to_thread(self.store.distinct_entities))
        return [n for n in notes if n not in embedded]

    def catch_up(self, project: Optional[str] = None) -> asyncio.Task:
        """
        Embed every note that has no rows, in the background.

        Single-flight per project: while a sweep for the project is running,
        the running task is returned instead of starting another.
        """
        running = self._catch_ups.get(project)
        if running is not None and not running.done():
            logger.debug('Catch-up already running', extra={'project': project})
            return running

        task = asyncio.get_running_loop().create_task(self._run_catch_up(project))
        self._catch_ups[project] = task
        return self._track(task)

    async def _run_catch_up(self, project: Optional[str]) -> Optional[EmbedProjectResult]:
        try:
            missing = await self.missing_entities(project)
            if not missing:
                logger.debug('No missing embeddings, skipping catch-up', extra={'project': project})
                return None

            logger.info(
                'Catch-up embedding trigger activated',
                extra={'project': project, 'missing_count': len(missing)}
            )

            result = await self.embed_project(limit=0, force=False, project=project, entity_ids=missing)

            logger.info(
                'Catch-up embedding complete',
                extra={
                    'project': project,
                    'processed': result.processed,
                    'failed': result.failed,
                    'total_chunks': result.total_chunks_generated,
                }
            )
            return result
        except Exception as e:
            logger.error(f'Catch-up embedding failed: {e}', extra={'project': project})
            return None
        finally:
            if self._catch_ups.get(project) is asyncio.current_task():
                del self._catch_ups[project]

    # =========================================================================
    # Retry Queue
    # =========================================================================

    async def process_queue(self, project: Optional[str] = None) -> Dict[str, int]:
        """
        Retry queued notes until the queue is empty.

        Returns:
            {'processed': n, 'failed': m}
        """
        processed = 0
        failed = 0

        if self.queue is None:
            return {'processed': processed, 'failed': failed}

        while True:
            item = await asyncio.to_thread(self.queue.dequeue)
            if item is None:
                break

            if item.attempts >= MAX_RETRIES:
                logger.warning(f'Removing note {item.entity_id} from queue after {MAX_RETRIES} failures',
                               extra={'entity_id': item.entity_id})
                await asyncio.to_thread(self.queue.mark_processed, item.id)
                failed += 1
                continue

            try:
                note = await self.notes.read_note(item.entity_id, project)
            except (NoteNotFoundError, NoteReadError) as e:
                logger.warning(f'Could not fetch content for note {item.entity_id}: {e}',
                               extra={'entity_id': item.entity_id})
                await asyncio.to_thread(self.queue.mark_processed, item.id)
                failed += 1
                continue

            try:
                await self.embed_note(item.entity_id, note.content)
            except NoteEmbeddingFailedError as e:
                delay = self.retry_base_delay * (2 ** item.attempts)
                logger.warning(
                    f'Retry {item.attempts + 1}/{MAX_RETRIES} for note {item.entity_id}. Next in {delay:.1f}s',
                    extra={'entity_id': item.entity_id}
                )
                await asyncio.to_thread(self.queue.increment_attempts, item.id, str(e.cause))
                await asyncio.sleep(delay)
                continue

            await asyncio.to_thread(self.queue.mark_processed, item.id)
            processed += 1
            logger.info(f'Embedding retry succeeded for note {item.entity_id}',
                        extra={'entity_id': item.entity_id})

        return {'processed': processed, 'failed': failed}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def wait_idle(self):
        """Wait for every background refresh, catch-up and scheduled note."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'concurrency': self.concurrency,
            'active': self._active,
            'peak_active': self.peak_active,
            'refreshes_in_flight': len(self._refreshes),
            'catch_ups_in_flight': len(self._catch_ups),
        }


# =============================================================================
# CLI
# =============================================================================

def main():
    """Command line entry point: embed a markdown notes directory."""
    import argparse
    import json

    from tqdm import tqdm

    from ..core.config import load_config
    from ..core.logging_config import setup_logging
    from ..notes.repository import MarkdownNoteRepository
    from .client import OllamaEmbeddingClient

    parser = argparse.ArgumentParser(description="Generate embeddings for a markdown notes directory")
    parser.add_argument('notes_dir', help="Directory of markdown notes")
    parser.add_argument('--config', '-c', help="YAML config file")
    parser.add_argument('--db', '-d', help="Vector database path (overrides config)")
    parser.add_argument('--force', action='store_true', help="Re-embed notes that already have rows")
    parser.add_argument('--limit', '-l', type=int, default=0, help="Max notes to process (0 = all)")
    parser.add_argument('--concurrency', type=int, help="Parallel notes (1-16)")

    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config.log_level, json_format=config.log_json)

    client = OllamaEmbeddingClient.from_config(config)
    if not client.check_health().semantic_enabled:
        raise SystemExit(1)

    store = VectorStore(args.db or config.db_path, dimension=config.embedding_dimension)
    pipeline = EmbeddingPipeline(
        client,
        store,
        MarkdownNoteRepository(args.notes_dir),
        config=config,
        concurrency=args.concurrency
    )

    bar = tqdm(desc="Embedding", unit="note")

    def show_progress(completed: int, total: int):
        bar.total = total
        bar.update(completed - bar.n)

    outcome = asyncio.run(pipeline.embed_project(
        limit=args.limit,
        force=args.force,
        on_progress=show_progress
    ))
    bar.close()

    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.success else 1


if __name__ == '__main__':
    raise SystemExit(main())
