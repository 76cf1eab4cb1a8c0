"""
Provider-facing services for the RAG pipeline.

- registry: supported models and their provider family
- transport: named-destination HTTP sender (timeouts, retry, circuit breaker)
- embedding_client / completion_client: one provider call each
- payload_builder / response_normalizer: family wire schemas in and out
- agents: single-call LLM agents (query classification)

This package never reads the vector store or the memory store.
"""
