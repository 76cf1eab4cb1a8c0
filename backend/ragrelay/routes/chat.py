"""
Chat endpoints.

POST /chat/rag-response     answer one user message with RAG
POST /chat/delete-chat-data clear every conversation and message
"""
from fastapi import APIRouter, Depends, HTTPException, Request

from ragrelay.core.logging import get_logger
from ragrelay.models.chat import RagRequest, RagResponse
from ragrelay.services.rag.orchestrator import RagOrchestrator

logger = get_logger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> RagOrchestrator:
    """The orchestrator wired at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        logger.error("orchestrator_not_initialized")
        raise HTTPException(status_code=503, detail="RAG pipeline is not initialized")
    return orchestrator


@router.post("/rag-response", response_model=RagResponse, response_model_by_alias=True)
async def rag_response(
    body: RagRequest,
    request: Request,
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
):
    """
    Answer a user message grounded on the retrieved documents.

    Pipeline errors propagate to the application's exception handlers, which
    map them to HTTP status codes.
    """
    return await orchestrator.get_rag_response(body, is_cancelled=request.is_disconnected)


@router.post("/delete-chat-data")
async def delete_chat_data(orchestrator: RagOrchestrator = Depends(get_orchestrator)):
    """Delete all conversations and messages. Safe to call repeatedly."""
    return await orchestrator.delete_all_chat_data()
