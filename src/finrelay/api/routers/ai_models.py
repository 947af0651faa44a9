from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.ai_models import AIModelCreate, AIModelOption, AIModelUpdate, AIModelView, ModelReference
from ...infrastructure.model_registry import DuplicateModelNameError, ModelNotFoundError, get_model_registry
from ...security.rbac import Permission, require_permission


router = APIRouter(prefix="/ai", tags=["ai-models"])
admin_router = APIRouter(prefix="/admin/ai-models", tags=["admin-ai-models"])


def _view(model: ModelReference) -> AIModelView:
    # model_dump() already drops the secret key
    return AIModelView(**model.model_dump())


@router.get("/models", response_model=List[AIModelOption])
def list_model_options(user=Depends(require_permission(Permission.AI_USE))) -> List[AIModelOption]:
    return [AIModelOption(id=m.id, name=m.name, sort_order=m.sort_order) for m in get_model_registry().list()]


@admin_router.get("", response_model=List[AIModelView])
def list_models(user=Depends(require_permission(Permission.ADMIN))) -> List[AIModelView]:
    return [_view(m) for m in get_model_registry().list()]


@admin_router.post("", response_model=AIModelView, status_code=status.HTTP_201_CREATED)
def create_model(payload: AIModelCreate, user=Depends(require_permission(Permission.ADMIN))) -> AIModelView:
    try:
        return _view(get_model_registry().create(payload))
    except DuplicateModelNameError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@admin_router.get("/{model_id}", response_model=AIModelView)
def get_model(model_id: int, user=Depends(require_permission(Permission.ADMIN))) -> AIModelView:
    try:
        return _view(get_model_registry().get(model_id))
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=404, detail="AI model not found") from exc


@admin_router.put("/{model_id}", response_model=AIModelView)
def update_model(
    model_id: int,
    patch: AIModelUpdate,
    user=Depends(require_permission(Permission.ADMIN)),
) -> AIModelView:
    try:
        return _view(get_model_registry().update(model_id, patch))
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=404, detail="AI model not found") from exc
    except DuplicateModelNameError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@admin_router.delete("/{model_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_model(model_id: int, user=Depends(require_permission(Permission.ADMIN))) -> Response:
    try:
        get_model_registry().delete(model_id)
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=404, detail="AI model not found") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
