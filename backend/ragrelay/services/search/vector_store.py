"""
Vector stores answering ranked similarity queries.

Queries receive identifiers and algorithm names already validated by
SimilaritySearchService. add_documents is the ingestion write path and
validates its own identifiers.

- PgVectorStore: PostgreSQL + pgvector through the shared asyncpg pool
- InMemoryVectorStore: numpy brute force over rows held in memory
"""
import re
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

import asyncpg
import numpy as np

from ragrelay.core.errors import ConfigValidationError
from ragrelay.core.logging import get_logger
from ragrelay.services.ai.schema import SimilarityMatch

logger = get_logger(__name__)

COSINE_SIMILARITY = "COSINE_SIMILARITY"
L2DISTANCE = "L2DISTANCE"

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# algorithm -> (score expression, sort direction); {column} is the embedding column
_PG_SCORE_SQL = {
    COSINE_SIMILARITY: ("1 - ({column} <=> $1::vector)", "DESC"),
    L2DISTANCE: ("{column} <-> $1::vector", "ASC"),
}


def validate_identifier(value: str, field: str) -> None:
    """Accept only plain, optionally schema-qualified, SQL identifiers."""
    if not isinstance(value, str) or not IDENTIFIER.match(value):
        raise ConfigValidationError(
            f"{field} must be a plain SQL identifier, got {value!r}.", field=field
        )


class VectorStore(Protocol):
    async def query(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        embedding: Sequence[float],
        algorithm: str,
        top_k: int,
    ) -> List[SimilarityMatch]: ...


class PgVectorStore:
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def query(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        embedding: Sequence[float],
        algorithm: str,
        top_k: int,
    ) -> List[SimilarityMatch]:
        score_sql, direction = _PG_SCORE_SQL[algorithm]
        statement = (
            f"SELECT {content_column}::text AS page_content, "
            f"{score_sql.format(column=embedding_column)} AS score "
            f"FROM {table} ORDER BY score {direction} LIMIT $2"
        )
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(statement, list(embedding), top_k)
        return [
            SimilarityMatch(content=row["page_content"] or "", score=float(row["score"]))
            for row in rows
        ]

    async def add_documents(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        rows: Sequence[Tuple[str, Sequence[float]]],
    ) -> None:
        validate_identifier(table, "table_name")
        validate_identifier(embedding_column, "embedding_column")
        validate_identifier(content_column, "content_column")
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} ("
                    "ID BIGSERIAL PRIMARY KEY, "
                    f"{content_column} TEXT NOT NULL, "
                    f"{embedding_column} vector NOT NULL)"
                )
                await connection.executemany(
                    f"INSERT INTO {table} ({content_column}, {embedding_column}) "
                    f"VALUES ($1, $2::vector)",
                    [(content, list(vector)) for content, vector in rows],
                )
        logger.info("vector_rows_inserted", table=table, rows=len(rows))


class InMemoryVectorStore:
    """
    Rows are plain mappings: {content_column: str, embedding_column: [float, ...]}.
    """

    def __init__(self, tables: Mapping[str, Sequence[Mapping[str, Any]]] = None):
        self.tables: Dict[str, List[Mapping[str, Any]]] = {
            name: list(rows) for name, rows in (tables or {}).items()
        }

    def add_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        self.tables.setdefault(table, []).extend(rows)

    async def add_documents(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        rows: Sequence[Tuple[str, Sequence[float]]],
    ) -> None:
        validate_identifier(table, "table_name")
        self.add_rows(
            table,
            [{content_column: content, embedding_column: list(vector)} for content, vector in rows],
        )

    async def query(
        self,
        table: str,
        embedding_column: str,
        content_column: str,
        embedding: Sequence[float],
        algorithm: str,
        top_k: int,
    ) -> List[SimilarityMatch]:
        rows = self.tables.get(table, [])
        if not rows:
            return []

        matrix = np.asarray([row[embedding_column] for row in rows], dtype="float32")
        query = np.asarray(embedding, dtype="float32")

        if algorithm == COSINE_SIMILARITY:
            norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
            norms[norms == 0] = 1.0
            scores = matrix @ query / norms
            order = np.argsort(-scores, kind="stable")
        else:
            scores = np.linalg.norm(matrix - query, axis=1)
            order = np.argsort(scores, kind="stable")

        return [
            SimilarityMatch(content=str(rows[i][content_column]), score=float(scores[i]))
            for i in order[:top_k]
        ]
