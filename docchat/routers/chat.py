from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..container import Services
from ..schemas import ChatHistory, ChatRequest, ChatResponse, ChatTurnOut, ErrorResponse
from .deps import current_owner, get_services

router = APIRouter(tags=["chat"], responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})

@router.post("/documents/{document_id}/chat", response_model=ChatResponse)
async def chat_with_document(
    document_id: UUID,
    req: ChatRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    history = None
    if req.chat_history is not None:
        history = [m.model_dump() for m in req.chat_history]
    answer = await services.chat.answer(document_id, owner_id, req.message.strip(), history)
    return ChatResponse(
        response=answer.response,
        chunks_used=answer.chunks_used,
        is_fallback=answer.is_fallback,
        model=answer.model,
    )

@router.get("/documents/{document_id}/chat", response_model=ChatHistory)
async def get_chat_history(
    document_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    turns = await services.chat.history(document_id, owner_id, limit=limit)
    return ChatHistory(chat_history=[ChatTurnOut.model_validate(t) for t in turns])

@router.delete("/documents/{document_id}/chat")
async def clear_chat_history(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    removed = await services.chat.clear_history(document_id, owner_id)
    return {"success": True, "removed": removed}
