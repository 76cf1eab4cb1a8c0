"""Pydantic models for the HTTP surface."""

from .chat import RagRequest, RagResponse

__all__ = ["RagRequest", "RagResponse"]
