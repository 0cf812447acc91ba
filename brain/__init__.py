"""
Brain - semantic retrieval core

Turns a corpus of markdown notes into a chunked vector index that is kept
consistent with edits, and answers queries by fusing vector similarity,
keyword search and wiki-link graph traversal.

Packages:
- brain.core: configuration, logging and the error taxonomy
- brain.embedding: embedding client, chunker, ingest pipeline, retry queue
- brain.database: SQLite-backed vector store
- brain.search: unified search service
- brain.notes: note store port and adapters

Usage:
    from brain.core.config import load_config
    from brain.embedding import OllamaEmbeddingClient, EmbeddingPipeline
    from brain.database import VectorStore
    from brain.notes import MarkdownNoteRepository
    from brain.search import SearchService

    config = load_config()
    notes = MarkdownNoteRepository('~/notes')
    store = VectorStore(config.vector_db_path, dimension=config.embedding_dimension)
    client = OllamaEmbeddingClient.from_config(config)

    pipeline = EmbeddingPipeline(client, store, notes, config=config)
    service = SearchService(client, store, notes, config=config)
"""

__version__ = '0.3.0'
