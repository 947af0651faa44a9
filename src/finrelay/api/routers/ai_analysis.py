from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ...domain.transcript_models import AnalysisRequest, AnalysisTranscriptPage
from ...infrastructure.transcript_store import DEFAULT_PAGE_SIZE, get_transcript_store
from ...security.auth import User
from ...security.rbac import Permission, require_permission
from ...services.persistence import AnalysisOrigin
from ...services.relay_service import RelayService, RelayTrigger
from ..streaming import enforce_rate_limit, relay_response, relay_service


router = APIRouter(prefix="/ai/analysis", tags=["ai-analysis"])
admin_router = APIRouter(prefix="/admin/ai/analysis", tags=["admin-ai-analysis"])


def _trigger(req: AnalysisRequest, user: User) -> RelayTrigger:
    # The prompt already embeds the caller's bill summary for the range
    return RelayTrigger(
        model_id=req.model_id,
        prompt=req.prompt,
        origin=AnalysisOrigin(start_date=req.start_date, end_date=req.end_date),
        user_id=user.id,
    )


@router.post("")
async def analyze(
    req: AnalysisRequest,
    request: Request,
    user: User = Depends(require_permission(Permission.AI_USE)),
    service: RelayService = Depends(relay_service),
):
    enforce_rate_limit(request, user)
    return await relay_response(request, _trigger(req, user), service)


@router.get("/history", response_model=AnalysisTranscriptPage)
def analysis_history(
    model_id: int = Query(..., gt=0),
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_permission(Permission.AI_USE)),
) -> AnalysisTranscriptPage:
    return get_transcript_store().list_analyses(model_id, user_id=user.id, page=page, page_size=page_size)


@router.delete("/history/{transcript_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_analysis(transcript_id: int, user: User = Depends(require_permission(Permission.AI_USE))) -> Response:
    store = get_transcript_store()
    transcript = store.get_analysis(transcript_id)
    if transcript is None:
        raise HTTPException(status_code=404, detail="Analysis record not found")
    if transcript.user_id and transcript.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to delete this record")
    store.soft_delete_analysis(transcript_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.post("")
async def admin_analyze(
    req: AnalysisRequest,
    request: Request,
    user: User = Depends(require_permission(Permission.ADMIN)),
    service: RelayService = Depends(relay_service),
):
    return await relay_response(request, _trigger(req, user), service)


@admin_router.get("/history", response_model=AnalysisTranscriptPage)
def admin_analysis_history(
    model_id: int = Query(..., gt=0),
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_permission(Permission.ADMIN)),
) -> AnalysisTranscriptPage:
    return get_transcript_store().list_analyses(model_id, page=page, page_size=page_size)


@admin_router.delete("/history/{transcript_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def admin_delete_analysis(transcript_id: int, user: User = Depends(require_permission(Permission.ADMIN))) -> Response:
    if not get_transcript_store().soft_delete_analysis(transcript_id):
        raise HTTPException(status_code=404, detail="Analysis record not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
