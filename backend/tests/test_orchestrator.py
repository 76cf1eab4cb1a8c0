"""
End-to-end tests for the RAG orchestrator with scripted providers and
in-memory stores.
"""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ScriptedTransport, claude_envelope, classification_reply, gpt_chat_envelope
from ragrelay.core.errors import (
    ClassificationParseError,
    InvalidSimilarityAlgorithmError,
    NoAssistantTextError,
    RequestCancelledError,
)
from ragrelay.models.chat import RagRequest
from ragrelay.services.ai.schema import ConversationTurn
from ragrelay.services.rag.orchestrator import build_orchestrator, format_message_time

MARCH = "2024/03/01-2024/03/31"


def leave_request(conversation_id="C1", message_id="m1"):
    return RagRequest(
        conversation_id=conversation_id,
        message_id=message_id,
        message_time=datetime(2024, 2, 20, 10, 0, tzinfo=timezone.utc),
        user_id="u1",
        user_query="Can I take leave in March?",
    )


def assistant_turns(memory_store, conversation_id="C1"):
    return [m for m in memory_store.messages[conversation_id] if m["role"] == "assistant"]


@pytest.mark.asyncio
async def test_leave_request_end_to_end_gpt(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[
            classification_reply("leave-request-query", MARCH),
            gpt_chat_envelope("Yes, submit the request two weeks ahead."),
        ]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    response = await orchestrator.get_rag_response(leave_request())

    # one classification call plus exactly one RAG completion
    assert len(transport.chat_calls) == 2
    rag_payload = transport.chat_calls[1]["body"]
    system = rag_payload["messages"][0]
    assert system["role"] == "system"
    assert MARCH in system["content"]
    assert "```" in system["content"]
    assert "Employees get 25 days of annual leave." in system["content"]
    assert rag_payload["messages"][-1] == {"role": "user", "content": "Can I take leave in March?"}

    assert response.role == "assistant"
    assert response.content == "Yes, submit the request two weeks ahead."
    assert len(response.additional_contents) == 2
    assert response.additional_contents[0].content == "Annual leave must be requested two weeks ahead."

    turns = assistant_turns(memory_store)
    assert len(turns) == 1
    assert turns[0]["content"] == "Yes, submit the request two weeks ahead."


@pytest.mark.asyncio
async def test_leave_request_end_to_end_claude(settings, claude_chat_config, memory_store, vector_store):
    settings = settings.model_copy(update={"chat_model": claude_chat_config})
    transport = ScriptedTransport(
        chat_responses=[
            claude_envelope(json.dumps({"category": "leave-request-query", "dates": MARCH})),
            claude_envelope("You may, with approval."),
        ]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    response = await orchestrator.get_rag_response(leave_request())

    call = transport.chat_calls[1]
    assert call["path"] == "/v2/inference/deployments/d-claude/invoke"
    assert MARCH in call["body"]["system"]
    assert all(m["role"] != "system" for m in call["body"]["messages"])
    assert response.content == "You may, with approval."
    assert len(response.additional_contents) == 2
    assert len(assistant_turns(memory_store)) == 1


@pytest.mark.asyncio
async def test_response_serializes_with_aliases(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), gpt_chat_envelope("Answer")]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    body = (await orchestrator.get_rag_response(leave_request())).model_dump(by_alias=True)

    assert set(body) == {"role", "content", "messageTime", "additionalContents"}
    assert body["messageTime"].endswith("Z")
    assert body["additionalContents"][0].keys() == {"content", "score"}


@pytest.mark.asyncio
async def test_prior_context_is_sanitized_before_payload(settings, vector_store):
    memory = MagicMock()
    memory.recall_context = AsyncMock(
        return_value=[{"role": "model", "content": "  earlier answer "}, "junk", {"role": "x", "content": "y"}]
    )
    memory.append_turn = AsyncMock()
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), gpt_chat_envelope("Answer")]
    )
    orchestrator = build_orchestrator(settings, memory, vector_store, transport=transport)

    await orchestrator.get_rag_response(leave_request())

    messages = transport.chat_calls[1]["body"]["messages"]
    assert messages[1:] == [
        {"role": "assistant", "content": "earlier answer"},
        {"role": "user", "content": "Can I take leave in March?"},
    ]
    memory.append_turn.assert_awaited_once()
    persisted = memory.append_turn.call_args.args[2]
    assert persisted == ConversationTurn(role="assistant", content="Answer")


@pytest.mark.asyncio
async def test_answer_text_is_returned_verbatim_and_persisted_trimmed(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), gpt_chat_envelope("  Line one\n\n")]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    response = await orchestrator.get_rag_response(leave_request())

    assert response.content == "  Line one\n\n"
    assert assistant_turns(memory_store)[0]["content"] == "Line one"


@pytest.mark.asyncio
async def test_nothing_persisted_when_normalization_fails(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), {"id": "x", "unexpected": True}]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    with pytest.raises(NoAssistantTextError):
        await orchestrator.get_rag_response(leave_request())

    assert assistant_turns(memory_store) == []


@pytest.mark.asyncio
async def test_classification_failure_aborts_before_memory(settings, memory_store, vector_store):
    transport = ScriptedTransport(chat_responses=[gpt_chat_envelope("no idea")])
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    with pytest.raises(ClassificationParseError):
        await orchestrator.get_rag_response(leave_request())

    assert memory_store.conversations == {}
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_invalid_algorithm_aborts_before_completion(settings, memory_store, vector_store):
    settings = settings.model_copy(
        update={"retrieval": settings.retrieval.model_copy(update={"algorithm": "DOT_PRODUCT"})}
    )
    transport = ScriptedTransport(chat_responses=[classification_reply("generic-query")])
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)

    with pytest.raises(InvalidSimilarityAlgorithmError):
        await orchestrator.get_rag_response(leave_request())

    assert len(transport.chat_calls) == 1
    assert assistant_turns(memory_store) == []


@pytest.mark.asyncio
async def test_cancelled_request_skips_completion(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), gpt_chat_envelope("never sent")]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)
    is_cancelled = AsyncMock(return_value=True)

    with pytest.raises(RequestCancelledError):
        await orchestrator.get_rag_response(leave_request(), is_cancelled=is_cancelled)

    is_cancelled.assert_awaited_once()
    assert len(transport.chat_calls) == 1
    assert assistant_turns(memory_store) == []


@pytest.mark.asyncio
async def test_delete_all_chat_data_is_idempotent(settings, memory_store, vector_store):
    transport = ScriptedTransport(
        chat_responses=[classification_reply("generic-query"), gpt_chat_envelope("Answer")]
    )
    orchestrator = build_orchestrator(settings, memory_store, vector_store, transport=transport)
    await orchestrator.get_rag_response(leave_request())

    assert await orchestrator.delete_all_chat_data() == "Success!"
    assert memory_store.conversations == {}
    assert await orchestrator.delete_all_chat_data() == "Success!"
    assert memory_store.conversations == {}


def test_format_message_time():
    assert format_message_time(datetime(2024, 3, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)) == (
        "2024-03-01T12:30:05.123Z"
    )
    assert format_message_time(datetime(2024, 3, 1, 12, 30)) == "2024-03-01T12:30:00.000Z"
