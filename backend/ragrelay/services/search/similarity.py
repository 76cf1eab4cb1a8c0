"""
Similarity search engine.

Issues one ranked top-K query against a vector store:
- COSINE_SIMILARITY: higher score = more similar, sorted descending
- L2DISTANCE: lower score = more similar, sorted ascending

Any other algorithm name is rejected before the store is touched. This is
the only stage that reads persistent storage directly, and it never writes.
"""
import time
from typing import List, Sequence

from ragrelay.core.errors import ConfigValidationError, InvalidSimilarityAlgorithmError
from ragrelay.core.logging import get_logger
from ragrelay.core.metrics import record_similarity_search
from ragrelay.services.ai.schema import SimilarityMatch
from ragrelay.services.search.vector_store import (
    COSINE_SIMILARITY,
    L2DISTANCE,
    VectorStore,
    validate_identifier,
)

logger = get_logger(__name__)

VALID_ALGORITHMS = (COSINE_SIMILARITY, L2DISTANCE)
DESCENDING = {COSINE_SIMILARITY: True, L2DISTANCE: False}


def validate_algorithm(algorithm: str) -> str:
    if algorithm not in VALID_ALGORITHMS:
        raise InvalidSimilarityAlgorithmError(algorithm)
    return algorithm


class SimilaritySearchService:
    def __init__(self, store: VectorStore):
        self._store = store

    async def search(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        embedding: Sequence[float],
        algorithm: str = COSINE_SIMILARITY,
        top_k: int = 3,
    ) -> List[SimilarityMatch]:
        """
        Return the top-K matches for ``embedding``, ranked per ``algorithm``.

        Raises:
            InvalidSimilarityAlgorithmError: algorithm is not supported
            ConfigValidationError: bad table/column identifier, top_k < 1 or empty embedding
        """
        validate_algorithm(algorithm)
        validate_identifier(table, "table_name")
        validate_identifier(embedding_column, "embedding_column")
        validate_identifier(content_column, "content_column")
        if top_k < 1:
            raise ConfigValidationError("top_k must be at least 1.", field="top_k")
        if not embedding:
            raise ConfigValidationError("Query embedding is empty.", field="embedding")

        start = time.time()
        try:
            matches = await self._store.query(
                table, embedding_column, content_column, embedding, algorithm, top_k
            )
        except Exception as e:
            logger.error(
                "similarity_search_failed",
                table=table,
                embedding_column=embedding_column,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        ranked = sorted(matches, key=lambda m: m.score, reverse=DESCENDING[algorithm])[:top_k]
        duration = time.time() - start
        record_similarity_search(algorithm, duration, len(ranked))
        logger.info(
            "similarity_search_completed",
            table=table,
            algorithm=algorithm,
            top_k=top_k,
            results_count=len(ranked),
            latency_ms=int(duration * 1000),
        )
        return ranked
