from fastapi import Request, HTTPException
from fastapi.responses import StreamingResponse
from typing import Dict, Any

from services.diagnosis.event_encoder import encode_stream
from services.diagnosis.knowledge_matcher import suggest_diseases
from services.diagnosis.stream_orchestrator import DiagnosisOrchestrator

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def stream_analysis(request: Request, image_url: str) -> StreamingResponse:
    """Start a diagnosis run and stream its progress as Server-Sent Events.

    The orchestrator is built per request from the shared collaborators on
    `app.state`. Image validation happens inside the stream, so a bad
    reference still produces a well-formed `error` frame followed by the
    `[DONE]` sentinel.

    Args:
        request: FastAPI Request (used for app.state, the client address and
            disconnect polling).
        image_url: Image reference from the request body.

    Returns:
        A `text/event-stream` StreamingResponse.

    Raises:
        HTTPException(429) when the client exceeded the request rate.
        HTTPException(500) when a pipeline collaborator is missing.
    """
    state = request.app.state
    rate_limiter = getattr(state, "rate_limiter", None)
    if rate_limiter is not None:
        client_key = request.client.host if request.client else "unknown"
        decision = await rate_limiter.check(client_key)
        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later",
                headers={"Retry-After": str(max(1, round(decision.retry_after)))},
            )

    try:
        orchestrator = DiagnosisOrchestrator(
            getattr(state, "identifier", None),
            getattr(state, "aggregator", None),
            getattr(state, "synthesizer", None),
            state.settings,
        )
    except (ValueError, AttributeError) as exc:
        raise HTTPException(status_code=500, detail=f"Diagnosis pipeline unavailable: {exc}")

    events = orchestrator.run(image_url, is_disconnected=request.is_disconnected)
    return StreamingResponse(
        encode_stream(events, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def suggest(query: str) -> Dict[str, Any]:
    """Return ranked disease-name suggestions for an autocomplete query."""
    return {"query": query, "suggestions": suggest_diseases(query)}
