"""Similarity retrieval over vector stores, and the ingestion path that fills them."""

from .ingest import DocumentIngestor, chunk_text
from .similarity import SimilaritySearchService, VALID_ALGORITHMS
from .vector_store import InMemoryVectorStore, PgVectorStore, VectorStore

__all__ = [
    "DocumentIngestor",
    "chunk_text",
    "SimilaritySearchService",
    "VALID_ALGORITHMS",
    "InMemoryVectorStore",
    "PgVectorStore",
    "VectorStore",
]
