"""
Shared fixtures: model configs, a scripted provider transport, and the
in-memory stores. Nothing here performs network or database I/O.
"""
import json
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from ragrelay.core.config import DestinationConfig, ModelConfig, RetrievalConfig, Settings
from ragrelay.services.memory.store import InMemoryMemoryStore
from ragrelay.services.search.vector_store import InMemoryVectorStore

TABLE = "SAP_DEMO_LLM_DOCUMENTCHUNK"
REFERENCE_DAY = date(2024, 1, 15)


def gpt_chat_envelope(text: str) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
    }


def claude_envelope(text: str) -> Dict[str, Any]:
    return {"id": "msg_1", "type": "message", "content": [{"type": "text", "text": text}]}


def embedding_envelope(vector: List[float]) -> Dict[str, Any]:
    return {"object": "list", "data": [{"index": 0, "embedding": vector}]}


class ScriptedTransport:
    """
    Stands in for ProviderTransport.

    Embedding requests always answer with ``embedding``; chat requests pop
    the next scripted envelope. Every call is recorded.
    """

    def __init__(self, chat_responses: Optional[List[Any]] = None, embedding: Optional[List[float]] = None):
        self.chat_responses = list(chat_responses or [])
        self.embedding = embedding or [1.0, 0.0, 0.0]
        self.calls: List[Dict[str, Any]] = []

    @property
    def chat_calls(self) -> List[Dict[str, Any]]:
        return [call for call in self.calls if "/embeddings" not in call["path"]]

    async def send(self, destination, method, path, body=None, headers=None):
        self.calls.append(
            {
                "destination": destination,
                "method": method,
                "path": path,
                "body": body,
                "headers": dict(headers or {}),
            }
        )
        if "/embeddings" in path:
            return embedding_envelope(self.embedding)
        if not self.chat_responses:
            raise AssertionError(f"unexpected chat call to {path}")
        return self.chat_responses.pop(0)

    async def aclose(self):
        pass


def classification_reply(category: str, dates: Optional[str] = None) -> Dict[str, Any]:
    payload = {"category": category}
    if dates:
        payload["dates"] = dates
    return gpt_chat_envelope(json.dumps(payload))


@pytest.fixture
def gpt_chat_config():
    return ModelConfig(
        destination="genai-hub",
        deployment_endpoint="/v2/inference/deployments/d-chat",
        resource_group="default",
        model_name="gpt-4o",
        api_version="2024-02-01",
    )


@pytest.fixture
def claude_chat_config():
    return ModelConfig(
        destination="genai-hub",
        deployment_endpoint="/v2/inference/deployments/d-claude",
        resource_group="default",
        model_name="anthropic--claude-3-haiku",
    )


@pytest.fixture
def embedding_config():
    return ModelConfig(
        destination="genai-hub",
        deployment_endpoint="/v2/inference/deployments/d-embed",
        resource_group="default",
        model_name="text-embedding-ada-002",
        api_version="2023-05-15",
    )


@pytest.fixture
def settings(gpt_chat_config, embedding_config):
    return Settings(
        embedding_model=embedding_config,
        chat_model=gpt_chat_config,
        destinations={
            "GENAI_HUB": DestinationConfig(
                name="GENAI_HUB", base_url="https://gateway.example.com", token="secret"
            )
        },
        retrieval=RetrievalConfig(),
        database_url=None,
    )


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def vector_store():
    return InMemoryVectorStore(
        {
            TABLE: [
                {"EMBEDDING": [1.0, 0.0, 0.0], "TEXT_CHUNK": "Annual leave must be requested two weeks ahead."},
                {"EMBEDDING": [0.8, 0.6, 0.0], "TEXT_CHUNK": "Employees get 25 days of annual leave."},
            ]
        }
    )
