"""Server-Sent-Events framing for diagnosis progress events."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Optional

from models.diagnosis_models import EventType, ProgressEvent

DONE_SENTINEL = "[DONE]"


def encode(event: ProgressEvent) -> str:
	"""Return one SSE frame: id, event name and a single JSON data line."""
	data = json.dumps(event.payload, ensure_ascii=False, separators=(",", ":"))
	return f"id: {event.seq}\nevent: {event.type.value}\ndata: {data}\n\n"


def encode_done() -> str:
	"""Return the end-of-stream marker."""
	return f"data: {DONE_SENTINEL}\n\n"


async def encode_stream(
	events: AsyncIterable[ProgressEvent],
	is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[bytes]:
	"""Encode an event stream as UTF-8 frames, ending with exactly one terminal event.

	Events after the first terminal event are dropped. If the source ends
	without a terminal event an `error` frame is written, unless the client
	has already gone away.
	"""
	terminated = False
	last_seq = 0
	async for event in events:
		if terminated:
			logging.warning("Dropping %s event emitted after the terminal event", event.type.value)
			continue
		last_seq = event.seq
		terminated = event.is_terminal
		yield encode(event).encode("utf-8")
	if not terminated:
		if is_disconnected is not None and await is_disconnected():
			return
		fallback = ProgressEvent(
			type=EventType.ERROR,
			payload={"error": "Phân tích bị gián đoạn"},
			seq=last_seq + 1,
		)
		yield encode(fallback).encode("utf-8")
	yield encode_done().encode("utf-8")
