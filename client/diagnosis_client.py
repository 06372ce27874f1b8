"""Async client for the streaming diagnosis endpoint."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from client.stream_reducer import ReducerState, StreamReducer
from models.diagnosis_models import ProgressEvent

STREAM_PATH = "/api/v1/analyze/image-stream"

ProgressCallback = Callable[[ProgressEvent, ReducerState], Union[None, Awaitable[None]]]


class DiagnosisStreamError(RuntimeError):
    """The stream could not be opened or ended without a result."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DiagnosisStreamClient:
    """POST an image reference and fold the SSE response into a ReducerState.

    Leaving the `analyze` call early (cancellation or an exception in the
    callback) closes the underlying HTTP response, which the server sees as
    a disconnect.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = "", timeout: Optional[float] = 130.0) -> None:
        if http_client is None:
            raise ValueError("httpx.AsyncClient is required.")
        self.http = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def analyze(self, image_url: str, on_progress: Optional[ProgressCallback] = None) -> ReducerState:
        """Run one diagnosis and return the final reducer state."""
        reducer = StreamReducer()
        async with self.http.stream(
            "POST",
            f"{self.base_url}{STREAM_PATH}",
            json={"imageUrl": image_url},
            headers={"Accept": "text/event-stream"},
            timeout=self.timeout,
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise DiagnosisStreamError(f"Stream request failed ({response.status_code}): {body[:200]}", response.status_code)
            async for chunk in response.aiter_bytes():
                for event in reducer.feed(chunk):
                    await self._notify(on_progress, event, reducer.state)
                if reducer.state.done:
                    break

        state = reducer.state
        if state.status not in ("complete", "error"):
            logging.warning("Diagnosis stream ended without a terminal event")
            state.status = "error"
            state.error = state.error or "Stream ended unexpectedly"
        return state

    @staticmethod
    async def _notify(callback: Optional[ProgressCallback], event: ProgressEvent, state: ReducerState) -> Any:
        if callback is None:
            return None
        result = callback(event, state)
        if inspect.isawaitable(result):
            await result
        return None
