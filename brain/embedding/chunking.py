"""
Text chunking for embeddings.

Splits a note into overlapping pieces of roughly `target_size` characters
(~500 tokens at 4 chars/token) with up to `overlap` characters repeated
between neighbours. Splitting is delegated to LangChain's
RecursiveCharacterTextSplitter, which cuts on paragraph breaks first, then
line breaks, then spaces, and hard-cuts only when a single word is longer
than a chunk.

Offsets are exact: chunk.text == text[chunk.start:chunk.end]. Whitespace is
never stripped, so consecutive chunks meet or overlap and together cover
the whole source.

Usage:
    from brain.embedding.chunking import chunk_text

    for chunk in chunk_text(content, target_size=2000, overlap=200):
        print(chunk.index, chunk.start, chunk.end)
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from langchain_text_splitters import RecursiveCharacterTextSplitter

DEFAULT_TARGET_SIZE = 2000
DEFAULT_OVERLAP = 200

SEPARATORS = ['\n\n', '\n', ' ', '']


@dataclass(frozen=True)
class ChunkSpec:
    """One chunk of a note's content."""
    index: int
    start: int
    end: int
    text: str
    total_chunks: int

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'start': self.start,
            'end': self.end,
            'text': self.text,
            'total_chunks': self.total_chunks,
        }


def _splitter(target_size: int, overlap: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=target_size,
        chunk_overlap=overlap,
        separators=SEPARATORS,
        add_start_index=True,
        strip_whitespace=False,
    )


def chunk_text(
    text: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    overlap: int = DEFAULT_OVERLAP
) -> List[ChunkSpec]:
    """
    Split text into overlapping chunks.

    Args:
        text: Full note content
        target_size: Maximum chunk length in characters
        overlap: Maximum characters shared by consecutive chunks

    Returns:
        Chunks with exact offsets. Empty text yields a single empty chunk;
        text no longer than target_size (whitespace-only text included)
        yields one chunk spanning all of it.
    """
    if target_size < 1:
        raise ValueError('target_size must be positive')
    if not 0 <= overlap < target_size:
        raise ValueError('overlap must be in [0, target_size)')

    if not text:
        return [ChunkSpec(index=0, start=0, end=0, text='', total_chunks=1)]

    if len(text) <= target_size:
        return [ChunkSpec(index=0, start=0, end=len(text), text=text, total_chunks=1)]

    documents = _splitter(target_size, overlap).create_documents([text])
    total = len(documents)

    chunks = []
    for i, doc in enumerate(documents):
        start = doc.metadata['start_index']
        chunks.append(ChunkSpec(
            index=i,
            start=start,
            end=start + len(doc.page_content),
            text=doc.page_content,
            total_chunks=total,
        ))
    return chunks


def requires_chunking(text: str, target_size: int = DEFAULT_TARGET_SIZE) -> bool:
    """True if text is longer than one chunk."""
    return len(text) > target_size


def get_chunk_config(
    target_size: int = DEFAULT_TARGET_SIZE,
    overlap: int = DEFAULT_OVERLAP
) -> Dict[str, Any]:
    """Chunker settings, for diagnostics."""
    return {
        'target_size': target_size,
        'overlap': overlap,
        'separators': list(SEPARATORS),
    }
