"""RAG pipeline orchestration."""

from .orchestrator import PipelineState, RagOrchestrator, build_orchestrator

__all__ = ["PipelineState", "RagOrchestrator", "build_orchestrator"]
