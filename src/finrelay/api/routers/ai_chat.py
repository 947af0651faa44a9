from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ...domain.transcript_models import ChatRequest, ChatTranscriptPage
from ...infrastructure.transcript_store import DEFAULT_PAGE_SIZE, get_transcript_store
from ...security.auth import User
from ...security.rbac import Permission, require_permission
from ...services.persistence import ChatOrigin
from ...services.relay_service import RelayService, RelayTrigger
from ..streaming import enforce_rate_limit, relay_response, relay_service


router = APIRouter(prefix="/ai/chat", tags=["ai-chat"])
admin_router = APIRouter(prefix="/admin/ai/chat", tags=["admin-ai-chat"])


def _trigger(req: ChatRequest, user: User) -> RelayTrigger:
    return RelayTrigger(
        model_id=req.model_id,
        prompt=req.message,
        origin=ChatOrigin(message=req.message),
        user_id=user.id,
    )


@router.post("")
async def chat(
    req: ChatRequest,
    request: Request,
    user: User = Depends(require_permission(Permission.AI_USE)),
    service: RelayService = Depends(relay_service),
):
    enforce_rate_limit(request, user)
    return await relay_response(request, _trigger(req, user), service)


@router.get("/history", response_model=ChatTranscriptPage)
def chat_history(
    model_id: int = Query(..., gt=0),
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_permission(Permission.AI_USE)),
) -> ChatTranscriptPage:
    return get_transcript_store().list_chats(model_id, user_id=user.id, page=page, page_size=page_size)


@router.delete("/history/{transcript_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_chat(transcript_id: int, user: User = Depends(require_permission(Permission.AI_USE))) -> Response:
    store = get_transcript_store()
    transcript = store.get_chat(transcript_id)
    if transcript is None:
        raise HTTPException(status_code=404, detail="Chat record not found")
    if transcript.user_id and transcript.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to delete this record")
    store.soft_delete_chat(transcript_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.post("")
async def admin_chat(
    req: ChatRequest,
    request: Request,
    user: User = Depends(require_permission(Permission.ADMIN)),
    service: RelayService = Depends(relay_service),
):
    return await relay_response(request, _trigger(req, user), service)


@admin_router.get("/history", response_model=ChatTranscriptPage)
def admin_chat_history(
    model_id: int = Query(..., gt=0),
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_permission(Permission.ADMIN)),
) -> ChatTranscriptPage:
    return get_transcript_store().list_chats(model_id, page=page, page_size=page_size)


@admin_router.delete("/history/{transcript_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def admin_delete_chat(transcript_id: int, user: User = Depends(require_permission(Permission.ADMIN))) -> Response:
    if not get_transcript_store().soft_delete_chat(transcript_id):
        raise HTTPException(status_code=404, detail="Chat record not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
