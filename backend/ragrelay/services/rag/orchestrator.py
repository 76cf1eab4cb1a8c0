"""
RAG orchestration pipeline.

States (strictly sequential, ERRORED reachable from any of them):

    CLASSIFYING -> RECALLING_MEMORY -> EMBEDDING -> SEARCHING_SIMILAR
    -> BUILDING_PROMPT -> COMPLETING -> NORMALIZING -> PERSISTING_MEMORY -> DONE

The only branch is the category-indexed prompt chosen after CLASSIFYING.
Any failure aborts the remaining stages and is re-raised unchanged. The
memory store only ever receives the normalized assistant turn, and only
after normalization succeeded.

Each stage gets its own span and a latency observation.
"""
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterator, Mapping, Optional

from ragrelay.core.config import ModelConfig, RetrievalConfig, Settings
from ragrelay.core.errors import NoAssistantTextError, RequestCancelledError
from ragrelay.core.logging import get_logger, set_conversation_id, set_user_id
from ragrelay.core.metrics import record_pipeline_run, record_pipeline_stage
from ragrelay.core.tracing import pipeline_span
from ragrelay.models.chat import RagRequest, RagResponse
from ragrelay.services.ai.agents.classifier import QueryClassificationAgent
from ragrelay.services.ai.completion_client import CompletionClient
from ragrelay.services.ai.embedding_client import EmbeddingClient, extract_embedding
from ragrelay.services.ai.payload_builder import build_chat_payload, build_rag_instruction
from ragrelay.services.ai.prompts import prompt_for_category
from ragrelay.services.ai.registry import resolve_chat_family
from ragrelay.services.ai.response_normalizer import require_assistant_text
from ragrelay.services.ai.schema import ConversationTurn, RagResult
from ragrelay.services.ai.transport import ProviderTransport
from ragrelay.services.memory.sanitizer import sanitize_context
from ragrelay.services.memory.store import MemoryStore
from ragrelay.services.search.similarity import SimilaritySearchService
from ragrelay.services.search.vector_store import VectorStore

logger = get_logger(__name__)

DELETE_SUCCESS = "Success!"

CancellationProbe = Callable[[], Awaitable[bool]]


class PipelineState(str, Enum):
    CLASSIFYING = "classifying"
    RECALLING_MEMORY = "recalling_memory"
    EMBEDDING = "embedding"
    SEARCHING_SIMILAR = "searching_similar"
    BUILDING_PROMPT = "building_prompt"
    COMPLETING = "completing"
    NORMALIZING = "normalizing"
    PERSISTING_MEMORY = "persisting_memory"
    DONE = "done"
    ERRORED = "errored"


class PipelineRun:
    """Progress of one request through the pipeline."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.state = PipelineState.CLASSIFYING
        self.started_at = time.time()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_message_time(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RagOrchestrator:
    """Answers one user message with retrieval-augmented generation."""

    def __init__(
        self,
        classifier: QueryClassificationAgent,
        memory_store: MemoryStore,
        embedding_client: EmbeddingClient,
        similarity_service: SimilaritySearchService,
        completion_client: CompletionClient,
        embedding_config: ModelConfig,
        chat_config: ModelConfig,
        retrieval: Optional[RetrievalConfig] = None,
        chat_params: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], datetime] = _utc_now,
        transport: Optional[ProviderTransport] = None,
    ):
        self._classifier = classifier
        self._memory_store = memory_store
        self._embedding_client = embedding_client
        self._similarity_service = similarity_service
        self._completion_client = completion_client
        self._embedding_config = embedding_config
        self._chat_config = chat_config
        self._retrieval = retrieval or RetrievalConfig()
        self._chat_params = dict(chat_params) if chat_params else None
        self._clock = clock
        self._transport = transport

    @property
    def memory_store(self) -> MemoryStore:
        return self._memory_store

    @contextmanager
    def _stage(self, run: PipelineRun, state: PipelineState) -> Iterator[None]:
        run.state = state
        start = time.time()
        with pipeline_span(state.value, run.conversation_id):
            try:
                yield
            finally:
                duration = time.time() - start
                record_pipeline_stage(state.value, duration)
                logger.debug(
                    "pipeline_stage_finished",
                    stage=state.value,
                    latency_ms=int(duration * 1000),
                )

    async def get_rag_response(
        self,
        request: RagRequest,
        is_cancelled: Optional[CancellationProbe] = None,
    ) -> RagResponse:
        """
        Run the full pipeline for one user message.

        Args:
            request: Incoming user message
            is_cancelled: Optional async probe; checked right before the
                completion call so an abandoned request never pays for it

        Raises:
            Any pipeline error unchanged (see ragrelay.core.errors), or
            RequestCancelledError when the probe reports the caller gone.
        """
        set_conversation_id(request.conversation_id)
        if request.user_id:
            set_user_id(request.user_id)

        run = PipelineRun(request.conversation_id)
        query = request.user_query
        logger.info(
            "rag_request_started",
            message_id=request.message_id,
            query_length=len(query),
        )

        try:
            with self._stage(run, PipelineState.CLASSIFYING):
                classification = await self._classifier.classify(query)

            with self._stage(run, PipelineState.RECALLING_MEMORY):
                raw_context = await self._memory_store.recall_context(
                    request.conversation_id,
                    request.message_id,
                    request.message_time,
                    request.user_id,
                    query,
                )
                context = sanitize_context(raw_context)

            with self._stage(run, PipelineState.EMBEDDING):
                embedding_response = await self._embedding_client.embed(
                    self._embedding_config, query
                )
                embedding = extract_embedding(embedding_response)

            with self._stage(run, PipelineState.SEARCHING_SIMILAR):
                matches = await self._similarity_service.search(
                    self._retrieval.table_name,
                    self._retrieval.embedding_column,
                    self._retrieval.content_column,
                    embedding,
                    algorithm=self._retrieval.algorithm,
                    top_k=self._retrieval.top_k,
                )

            with self._stage(run, PipelineState.BUILDING_PROMPT):
                instruction = build_rag_instruction(
                    prompt_for_category(classification.category, classification.dates),
                    [match.content for match in matches],
                )
                payload = build_chat_payload(
                    self._chat_config.model_name,
                    query,
                    instruction,
                    context,
                    self._chat_params,
                )

            with self._stage(run, PipelineState.COMPLETING):
                if is_cancelled is not None and await is_cancelled():
                    raise RequestCancelledError()
                completion = await self._completion_client.complete(
                    self._chat_config, payload, agent="rag"
                )
                result = RagResult(completion=completion, additional_contents=matches)

            with self._stage(run, PipelineState.NORMALIZING):
                text = require_assistant_text(
                    result.completion,
                    provider_hint=resolve_chat_family(self._chat_config.model_name).value,
                )
                if not text.strip():
                    raise NoAssistantTextError(result.completion)
                turn = ConversationTurn(role="assistant", content=text)

            answered_at = self._clock()
            with self._stage(run, PipelineState.PERSISTING_MEMORY):
                await self._memory_store.append_turn(
                    request.conversation_id, answered_at, turn
                )
        except Exception as exc:
            failed_stage = run.state
            run.state = PipelineState.ERRORED
            outcome = PipelineState.ERRORED.value
            if isinstance(exc, RequestCancelledError):
                outcome = "cancelled"
            record_pipeline_run(outcome, failed_stage=failed_stage.value)
            logger.warning(
                "rag_request_failed",
                failed_stage=failed_stage.value,
                error=str(exc),
                error_type=type(exc).__name__,
                latency_ms=int((time.time() - run.started_at) * 1000),
            )
            raise

        run.state = PipelineState.DONE
        record_pipeline_run(PipelineState.DONE.value)
        logger.info(
            "rag_request_completed",
            category=classification.category,
            context_turns=len(context),
            matches=len(matches),
            latency_ms=int((time.time() - run.started_at) * 1000),
        )
        return RagResponse(
            content=text,
            message_time=format_message_time(answered_at),
            additional_contents=result.additional_contents,
        )

    async def delete_all_chat_data(self) -> str:
        """Clear every conversation and message. Idempotent."""
        await self._memory_store.delete_all()
        logger.info("chat_data_deleted")
        return DELETE_SUCCESS

    async def aclose(self) -> None:
        if self._transport is not None:
            await self._transport.aclose()


def build_orchestrator(
    settings: Settings,
    memory_store: MemoryStore,
    vector_store: VectorStore,
    transport: Optional[ProviderTransport] = None,
    chat_params: Optional[Dict[str, Any]] = None,
) -> RagOrchestrator:
    """Wire a RagOrchestrator from settings and its two storage collaborators."""
    transport = transport or ProviderTransport(
        settings.destinations,
        timeout_seconds=settings.timeout_seconds,
        max_retries=settings.max_retries,
    )
    completion_client = CompletionClient(transport)
    return RagOrchestrator(
        classifier=QueryClassificationAgent(completion_client, settings.chat_model),
        memory_store=memory_store,
        embedding_client=EmbeddingClient(transport),
        similarity_service=SimilaritySearchService(vector_store),
        completion_client=completion_client,
        embedding_config=settings.embedding_model,
        chat_config=settings.chat_model,
        retrieval=settings.retrieval,
        chat_params=chat_params,
        transport=transport,
    )
