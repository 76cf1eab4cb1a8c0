"""
Document ingestion into the retrieval table.

Text is split on blank lines into paragraphs, paragraphs are packed into
chunks of at most ``chunk_size`` characters (an oversized paragraph is cut
into fixed windows), and each chunk is embedded with the configured
embedding model and written to the vector store.

This is the write path that fills the table the similarity search reads.
"""
import re
from typing import List, Optional, Sequence, Tuple

from ragrelay.core.config import ModelConfig, RetrievalConfig
from ragrelay.core.errors import ConfigValidationError
from ragrelay.core.logging import get_logger
from ragrelay.services.ai.embedding_client import EmbeddingClient, extract_embedding

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 100


def _split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n+", text) if p.strip()]


def _windows(text: str, size: int, overlap: int) -> List[str]:
    step = size - overlap
    return [text[start:start + size] for start in range(0, len(text), step) if text[start:start + size].strip()]


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> List[str]:
    """
    Split ``text`` into retrieval chunks.

    Raises:
        ConfigValidationError for chunk_size <= 0 or overlap outside [0, chunk_size)
    """
    if chunk_size <= 0:
        raise ConfigValidationError("chunk_size must be > 0", field="chunk_size")
    if overlap < 0 or overlap >= chunk_size:
        raise ConfigValidationError("overlap must be in [0, chunk_size)", field="overlap")

    chunks: List[str] = []
    current = ""
    for paragraph in _split_paragraphs(text or ""):
        if len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_windows(paragraph, chunk_size, overlap))
            continue
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= chunk_size:
            current = candidate
        else:
            chunks.append(current)
            current = paragraph
    if current:
        chunks.append(current)
    return chunks


class DocumentIngestor:
    """Embeds chunks and writes them to the retrieval table."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        embedding_config: ModelConfig,
        store,
        retrieval: Optional[RetrievalConfig] = None,
    ):
        self._embedding_client = embedding_client
        self._embedding_config = embedding_config
        self._store = store
        self._retrieval = retrieval or RetrievalConfig()

    async def ingest_chunks(self, chunks: Sequence[str]) -> int:
        rows: List[Tuple[str, List[float]]] = []
        for chunk in chunks:
            response = await self._embedding_client.embed(self._embedding_config, chunk)
            rows.append((chunk, extract_embedding(response)))

        if rows:
            await self._store.add_documents(
                self._retrieval.table_name,
                self._retrieval.embedding_column,
                self._retrieval.content_column,
                rows,
            )
        logger.info(
            "documents_ingested",
            table=self._retrieval.table_name,
            chunks=len(rows),
        )
        return len(rows)

    async def ingest_text(
        self,
        text: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
    ) -> int:
        return await self.ingest_chunks(chunk_text(text, chunk_size, overlap))
