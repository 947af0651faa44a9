from __future__ import annotations

"""Shared SSE plumbing for the chat and analysis routers."""

from fastapi import HTTPException, Request, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ..infrastructure.model_registry import ModelNotFoundError
from ..security.auth import User
from ..security.rate_limit import RateLimitExceeded, rate_limit_relay
from ..services.relay import encode_sse
from ..services.relay_service import RelayService, RelayTrigger, get_relay_service
from ..services.upstream_client import UpstreamError


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def relay_service() -> RelayService:
    """Dependency hook so tests can swap in a service with a fake upstream."""
    return get_relay_service()


def enforce_rate_limit(request: Request, user: User) -> None:
    identifier = request.client.host if request.client else "anonymous"
    try:
        rate_limit_relay(user.id, identifier)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many AI requests. Please try again later.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc


async def relay_response(request: Request, trigger: RelayTrigger, service: RelayService) -> StreamingResponse:
    """Resolve the model, open the upstream and hand the stream to the relay.

    Unknown models are a 404. Provider failures before the first byte are a
    502 with the upstream status and body, unless the service is configured
    to report them in-band as ``error`` + ``done`` frames.
    """

    try:
        model = service.resolve_model(trigger.model_id)
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="AI model not found") from exc

    if service.config.prestream_errors == "sse":
        frames = service.open_and_relay(model, trigger, request.is_disconnected)
    else:
        try:
            stream = await run_in_threadpool(service.open_upstream, model, trigger)
        except UpstreamError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail={"message": str(exc), "status_code": exc.status_code, "body": exc.body},
            ) from exc
        frames = service.relay(model, trigger, stream, request.is_disconnected).frames()

    return StreamingResponse(encode_sse(frames), media_type="text/event-stream", headers=SSE_HEADERS)
