"""
Unit tests for the similarity search engine and the vector stores.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import TABLE
from ragrelay.core.errors import ConfigValidationError, InvalidSimilarityAlgorithmError
from ragrelay.services.ai.schema import SimilarityMatch
from ragrelay.services.search.similarity import SimilaritySearchService
from ragrelay.services.search.vector_store import InMemoryVectorStore, PgVectorStore

ROWS = [
    {"EMBEDDING": [0.0, 1.0], "TEXT_CHUNK": "orthogonal"},
    {"EMBEDDING": [1.0, 0.0], "TEXT_CHUNK": "identical"},
    {"EMBEDDING": [1.0, 1.0], "TEXT_CHUNK": "diagonal"},
]


def make_service(rows=ROWS):
    return SimilaritySearchService(InMemoryVectorStore({TABLE: rows}))


@pytest.mark.asyncio
async def test_cosine_similarity_sorted_descending():
    matches = await make_service().search(
        TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0], algorithm="COSINE_SIMILARITY", top_k=3
    )

    assert [m.content for m in matches] == ["identical", "diagonal", "orthogonal"]
    assert matches[0].score == pytest.approx(1.0)
    scores = [m.score for m in matches]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_l2_distance_sorted_ascending():
    matches = await make_service().search(
        TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0], algorithm="L2DISTANCE", top_k=3
    )

    assert [m.content for m in matches] == ["identical", "diagonal", "orthogonal"]
    assert matches[0].score == pytest.approx(0.0)
    scores = [m.score for m in matches]
    assert scores == sorted(scores)


@pytest.mark.asyncio
async def test_default_top_k_is_three_and_limit_applies():
    rows = [{"EMBEDDING": [1.0, float(i)], "TEXT_CHUNK": str(i)} for i in range(10)]
    service = make_service(rows)

    assert len(await service.search(TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0])) == 3
    assert len(await service.search(TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0], top_k=1)) == 1


@pytest.mark.asyncio
async def test_results_are_resorted_regardless_of_store_order():
    store = MagicMock()
    store.query = AsyncMock(
        return_value=[
            SimilarityMatch(content="far", score=3.0),
            SimilarityMatch(content="near", score=0.5),
        ]
    )

    matches = await SimilaritySearchService(store).search(
        TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0], algorithm="L2DISTANCE", top_k=2
    )

    assert [m.content for m in matches] == ["near", "far"]


@pytest.mark.asyncio
@pytest.mark.parametrize("algorithm", ["cosine_similarity", "DOT_PRODUCT", "", None])
async def test_invalid_algorithm_rejected_before_store_access(algorithm):
    store = MagicMock()
    store.query = AsyncMock()

    with pytest.raises(InvalidSimilarityAlgorithmError) as exc_info:
        await SimilaritySearchService(store).search(
            TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0], algorithm=algorithm
        )

    store.query.assert_not_called()
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "table, column",
    [
        ("DOCS; DROP TABLE messages", "EMBEDDING"),
        (TABLE, "EMBEDDING) --"),
        ("a.b.c", "EMBEDDING"),
    ],
)
async def test_unsafe_identifiers_are_rejected(table, column):
    with pytest.raises(ConfigValidationError):
        await make_service().search(table, column, "TEXT_CHUNK", [1.0, 0.0])


@pytest.mark.asyncio
async def test_top_k_must_be_positive():
    with pytest.raises(ConfigValidationError) as exc_info:
        await make_service().search(TABLE, "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0], top_k=0)

    assert exc_info.value.field == "top_k"


@pytest.mark.asyncio
async def test_search_does_not_mutate_store():
    store = InMemoryVectorStore({TABLE: list(ROWS)})
    before = [dict(row) for row in store.tables[TABLE]]

    await SimilaritySearchService(store).search(TABLE, "EMBEDDING", "TEXT_CHUNK", [0.5, 0.5])

    assert store.tables[TABLE] == before


@pytest.mark.asyncio
async def test_unknown_table_returns_no_matches():
    assert await make_service().search("OTHER_TABLE", "EMBEDDING", "TEXT_CHUNK", [1.0, 0.0]) == []


@pytest.mark.asyncio
async def test_pgvector_query_statement():
    connection = MagicMock()
    connection.fetch = AsyncMock(return_value=[{"page_content": "chunk", "score": 0.9}])
    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=connection)
    acquire.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire)

    matches = await PgVectorStore(pool).query(
        TABLE, "EMBEDDING", "TEXT_CHUNK", [0.1, 0.2], "COSINE_SIMILARITY", 30
    )

    statement, vector, limit = connection.fetch.call_args.args
    assert "1 - (EMBEDDING <=> $1::vector) AS score" in statement
    assert f"FROM {TABLE} ORDER BY score DESC LIMIT $2" in statement
    assert vector == [0.1, 0.2]
    assert limit == 30
    assert matches == [SimilarityMatch(content="chunk", score=0.9)]
