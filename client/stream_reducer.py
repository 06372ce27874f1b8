"""Fold a diagnosis SSE byte stream into cumulative client state."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from models.diagnosis_models import EventType, ProgressEvent

DONE_SENTINEL = "[DONE]"

PROGRESS_BY_EVENT: Dict[EventType, int] = {
    EventType.CONNECTED: 5,
    EventType.PLANT_ID: 20,
    EventType.PLANT_IDENTIFIED: 30,
    EventType.DISEASE_FOUND: 50,
    EventType.TREATMENTS_CHEMICAL: 70,
    EventType.TREATMENTS_BIOLOGICAL: 75,
    EventType.TREATMENTS_CULTURAL: 80,
    EventType.CARE: 85,
    EventType.ADVISORY: 90,
    EventType.COMPLETE: 100,
    EventType.ERROR: 0,
}

# Result fields filled from the accumulated state when `complete` omits them.
_RESULT_FALLBACKS = ("plant", "diseases", "treatments", "care", "advisory")


@dataclass
class ReducerState:
    """Everything the client has learned so far; only ever grows."""

    status: str = "idle"
    progress: int = 0
    current_step: str = ""
    plant: Optional[Dict[str, Any]] = None
    diseases: List[Dict[str, Any]] = field(default_factory=list)
    treatments: Dict[str, Dict[str, List[Dict[str, Any]]]] = field(default_factory=dict)
    care: Optional[List[Dict[str, Any]]] = None
    advisory: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    last_seq: int = 0
    gaps: List[int] = field(default_factory=list)
    done: bool = False


class StreamReducer:
    """Incrementally parse SSE frames and apply them to a ReducerState.

    Chunks may split frames and multi-byte characters anywhere; the result
    is the same however the bytes are fragmented. Input after the `[DONE]`
    sentinel is ignored.
    """

    def __init__(self) -> None:
        self.state = ReducerState()
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._handlers: Dict[EventType, Callable[[ProgressEvent], None]] = {
            EventType.CONNECTED: self._on_connected,
            EventType.PLANT_ID: self._on_plant_id,
            EventType.PLANT_IDENTIFIED: self._on_plant_identified,
            EventType.DISEASE_FOUND: self._on_disease_found,
            EventType.TREATMENTS_CHEMICAL: self._on_treatments,
            EventType.TREATMENTS_BIOLOGICAL: self._on_treatments,
            EventType.TREATMENTS_CULTURAL: self._on_treatments,
            EventType.CARE: self._on_care,
            EventType.ADVISORY: self._on_advisory,
            EventType.COMPLETE: self._on_complete,
            EventType.ERROR: self._on_error,
        }

    @property
    def handled_types(self) -> frozenset:
        return frozenset(self._handlers)

    @property
    def result(self) -> Optional[Dict[str, Any]]:
        return self.state.result

    def feed(self, chunk: Union[bytes, str]) -> List[ProgressEvent]:
        """Consume a chunk and return the events it completed, in order."""
        if self.state.done:
            return []
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        frames = self._buffer.split("\n\n")
        self._buffer = frames.pop()
        events: List[ProgressEvent] = []
        for frame in frames:
            event = self._parse_frame(frame)
            if self.state.done:
                self._buffer = ""
                break
            if event is not None:
                self._apply(event)
                events.append(event)
        return events

    def _parse_frame(self, frame: str) -> Optional[ProgressEvent]:
        event_name = ""
        event_id: Optional[str] = None
        data_lines: List[str] = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event_name = value.strip()
            elif name == "data":
                data_lines.append(value)
            elif name == "id":
                event_id = value.strip()
        if not data_lines:
            return None

        data = "\n".join(data_lines).strip()
        if data == DONE_SENTINEL:
            self.state.done = True
            return None
        try:
            event_type = EventType(event_name)
        except ValueError:
            logging.debug("Ignoring unknown stream event %r", event_name)
            return None
        try:
            payload = json.loads(data)
        except ValueError:
            logging.warning("Ignoring %s event with malformed JSON data", event_name)
            return None
        try:
            seq = int(event_id) if event_id else self.state.last_seq + 1
        except ValueError:
            seq = self.state.last_seq + 1
        return ProgressEvent(type=event_type, payload=payload if isinstance(payload, dict) else {}, seq=seq)

    def _apply(self, event: ProgressEvent) -> None:
        state = self.state
        if state.last_seq and event.seq > state.last_seq + 1:
            state.gaps.extend(range(state.last_seq + 1, event.seq))
        state.last_seq = max(state.last_seq, event.seq)
        state.progress = max(state.progress, PROGRESS_BY_EVENT[event.type])
        message = event.payload.get("message")
        if message:
            state.current_step = message
        self._handlers[event.type](event)

    def _on_connected(self, event: ProgressEvent) -> None:
        self.state.status = "validating"

    def _on_plant_id(self, event: ProgressEvent) -> None:
        self.state.status = "analyzing"

    def _on_plant_identified(self, event: ProgressEvent) -> None:
        self.state.status = "analyzing"
        if self.state.plant is None and event.payload.get("plant"):
            self.state.plant = event.payload["plant"]

    def _on_disease_found(self, event: ProgressEvent) -> None:
        disease = event.payload.get("disease")
        if disease:
            self.state.diseases.append(disease)

    def _on_treatments(self, event: ProgressEvent) -> None:
        disease = event.payload.get("disease")
        items = event.payload.get("treatments")
        if not disease or items is None:
            return
        category = event.type.value.replace("treatments_", "", 1)
        by_category = self.state.treatments.setdefault(disease, {})
        by_category.setdefault(category, []).extend(items)

    def _on_care(self, event: ProgressEvent) -> None:
        care = event.payload.get("care")
        if care is not None:
            self.state.care = care

    def _on_advisory(self, event: ProgressEvent) -> None:
        advisory = event.payload.get("advisory")
        if advisory:
            self.state.advisory = advisory

    def _on_complete(self, event: ProgressEvent) -> None:
        result = dict(event.payload.get("result") or {})
        for key in _RESULT_FALLBACKS:
            if result.get(key) in (None, [], {}):
                accumulated = getattr(self.state, key)
                if accumulated not in (None, [], {}):
                    result[key] = accumulated
        self.state.result = result
        self.state.status = "complete"
        self.state.current_step = "Hoàn tất!"

    def _on_error(self, event: ProgressEvent) -> None:
        self.state.status = "error"
        self.state.error = event.payload.get("error") or "Có lỗi xảy ra"
