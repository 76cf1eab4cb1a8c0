"""
Load reference documents into the retrieval table.

This script:
1. Reads the given text files
2. Splits each file into paragraph-packed chunks
3. Embeds every chunk with the configured embedding model
4. Inserts (chunk, embedding) rows into RAG_TABLE_NAME (created if missing)

Usage:
    python backend/scripts/load_documents.py docs/hr_policy.txt [more.txt ...]
"""
import argparse
import asyncio
import sys
from pathlib import Path

from ragrelay.core.config import load_settings
from ragrelay.core.database_pool import close_database_pool, get_primary_pool, initialize_database_pool
from ragrelay.core.logging import configure_logging, get_logger
from ragrelay.services.ai.embedding_client import EmbeddingClient
from ragrelay.services.ai.transport import ProviderTransport
from ragrelay.services.search.ingest import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP, DocumentIngestor
from ragrelay.services.search.vector_store import PgVectorStore

configure_logging(log_level="INFO", json_output=False)
logger = get_logger(__name__)


async def load(paths, chunk_size: int, overlap: int) -> int:
    settings = load_settings()
    if not await initialize_database_pool(settings.database_url):
        logger.error("load_documents_db_unavailable")
        return 1

    transport = ProviderTransport(
        settings.destinations,
        timeout_seconds=settings.timeout_seconds,
        max_retries=settings.max_retries,
    )
    ingestor = DocumentIngestor(
        EmbeddingClient(transport),
        settings.embedding_model,
        PgVectorStore(get_primary_pool()),
        settings.retrieval,
    )

    total = 0
    try:
        for path in paths:
            text = Path(path).read_text(encoding="utf-8")
            inserted = await ingestor.ingest_text(text, chunk_size=chunk_size, overlap=overlap)
            logger.info("load_documents_file_done", path=str(path), chunks=inserted)
            total += inserted
    finally:
        await transport.aclose()
        await close_database_pool()

    logger.info("load_documents_completed", files=len(paths), chunks=total)
    return 0


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("paths", nargs="+", type=Path)
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument("--overlap", type=int, default=DEFAULT_OVERLAP)
    args = parser.parse_args()

    missing = [str(p) for p in args.paths if not p.is_file()]
    if missing:
        logger.error("load_documents_missing_files", paths=missing)
        sys.exit(1)

    sys.exit(asyncio.run(load(args.paths, args.chunk_size, args.overlap)))


if __name__ == "__main__":
    main()
