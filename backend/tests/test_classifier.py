"""
Unit tests for the query classification agent and its prompt helpers.

The LLM is replaced by a scripted transport; no HTTP calls are made.
"""
import json
from datetime import date

import pytest

from conftest import REFERENCE_DAY, ScriptedTransport, classification_reply, gpt_chat_envelope
from ragrelay.core.errors import ClassificationParseError, NoAssistantTextError
from ragrelay.services.ai.agents.classifier import QueryClassificationAgent, parse_json_text
from ragrelay.services.ai.completion_client import CompletionClient
from ragrelay.services.ai.prompts import (
    GENERIC_REQUEST_PROMPT,
    HR_REQUEST_PROMPT,
    build_classification_prompt,
    month_range,
    prompt_for_category,
    week_range,
)


def make_agent(config, *responses):
    transport = ScriptedTransport(chat_responses=list(responses))
    agent = QueryClassificationAgent(CompletionClient(transport), config, today=lambda: REFERENCE_DAY)
    return agent, transport


@pytest.mark.asyncio
async def test_explicit_dates_leave_request(gpt_chat_config):
    agent, transport = make_agent(
        gpt_chat_config,
        classification_reply("leave-request-query", "2024/01/01-2024/01/10"),
    )

    result = await agent.classify("Can I take leave between January 1 to January 10?")

    assert result.category == "leave-request-query"
    assert result.dates == "2024/01/01-2024/01/10"
    assert len(transport.chat_calls) == 1


@pytest.mark.asyncio
async def test_generic_query_has_no_dates(gpt_chat_config):
    agent, _ = make_agent(gpt_chat_config, classification_reply("generic-query"))

    result = await agent.classify("What is the maternity leave policy?")

    assert result.category == "generic-query"
    assert result.dates is None
    assert "dates" not in result.model_dump(exclude_none=True)


@pytest.mark.asyncio
async def test_generic_query_stray_dates_are_discarded(gpt_chat_config):
    agent, _ = make_agent(
        gpt_chat_config,
        classification_reply("generic-query", "2024/01/01-2024/01/10"),
    )

    result = await agent.classify("What is the maternity leave policy?")

    assert result.dates is None


@pytest.mark.asyncio
async def test_classifier_request_carries_prompt_and_query(gpt_chat_config):
    agent, transport = make_agent(gpt_chat_config, classification_reply("generic-query"))

    await agent.classify("Where is the office?")

    call = transport.chat_calls[0]
    messages = call["body"]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"] == build_classification_prompt(REFERENCE_DAY)
    assert messages[-1] == {"role": "user", "content": "Where is the office?"}
    assert call["path"] == "/v2/inference/deployments/d-chat/chat/completions?api-version=2024-02-01"
    assert call["headers"]["AI-Resource-Group"] == "default"


@pytest.mark.asyncio
async def test_fenced_json_is_accepted(gpt_chat_config):
    text = 'Here you go:\n```json\n{"category": "leave-request-query", "dates": "2024/03/01-2024/03/31"}\n```'
    agent, _ = make_agent(gpt_chat_config, gpt_chat_envelope(text))

    result = await agent.classify("Can I take leave in March?")

    assert result.dates == "2024/03/01-2024/03/31"


@pytest.mark.asyncio
async def test_unparseable_output_raises_parse_error(gpt_chat_config):
    agent, _ = make_agent(gpt_chat_config, gpt_chat_envelope("I think this is about leave."))

    with pytest.raises(ClassificationParseError) as exc_info:
        await agent.classify("Can I take leave?")

    assert exc_info.value.context["raw_excerpt"] == "I think this is about leave."


@pytest.mark.asyncio
async def test_unknown_category_raises_parse_error(gpt_chat_config):
    agent, _ = make_agent(gpt_chat_config, classification_reply("payroll-query"))

    with pytest.raises(ClassificationParseError):
        await agent.classify("When is payday?")


@pytest.mark.asyncio
@pytest.mark.parametrize("dates", [None, "March", "2024-03-01/2024-03-31"])
async def test_leave_request_requires_well_formed_dates(gpt_chat_config, dates):
    agent, _ = make_agent(gpt_chat_config, classification_reply("leave-request-query", dates))

    with pytest.raises(ClassificationParseError):
        await agent.classify("Can I take leave in March?")


@pytest.mark.asyncio
async def test_envelope_without_text_raises(gpt_chat_config):
    agent, _ = make_agent(gpt_chat_config, {"id": "x", "choices": []})

    with pytest.raises(NoAssistantTextError) as exc_info:
        await agent.classify("Can I take leave?")

    assert exc_info.value.stage == "classification"


def test_parse_json_text_direct_and_fenced():
    assert parse_json_text(' {"category": "generic-query"} ') == {"category": "generic-query"}
    assert parse_json_text('```\n{"a": 1}\n```') == {"a": 1}

    with pytest.raises(ClassificationParseError):
        parse_json_text("```json\nnot json\n```")
    with pytest.raises(ClassificationParseError):
        parse_json_text(None)


def test_week_range_uses_monday_to_friday():
    wednesday = date(2024, 1, 17)
    sunday = date(2024, 1, 21)

    assert week_range(wednesday) == "2024/01/15-2024/01/19"
    assert week_range(wednesday, weeks_ahead=1) == "2024/01/22-2024/01/26"
    assert week_range(sunday) == "2024/01/15-2024/01/19"


def test_month_range_handles_leap_years():
    assert month_range(2024, 2) == "2024/02/01-2024/02/29"
    assert month_range(2023, 2) == "2023/02/01-2023/02/28"


def test_classification_prompt_examples_follow_reference_date():
    prompt = build_classification_prompt(date(2024, 1, 17))

    assert "Today is Wednesday, 2024/01/17." in prompt
    assert json.dumps({"category": "leave-request-query", "dates": "2024/03/01-2024/03/31"}) in prompt
    assert '"dates": "2024/01/15-2024/01/19"' in prompt
    assert '"dates": "2024/01/22-2024/01/26"' in prompt


def test_prompt_for_category():
    assert prompt_for_category("generic-query") == GENERIC_REQUEST_PROMPT

    leave_prompt = prompt_for_category("leave-request-query", "2024/03/01-2024/03/31")
    assert leave_prompt.startswith(HR_REQUEST_PROMPT)
    assert "2024/03/01-2024/03/31" in leave_prompt
