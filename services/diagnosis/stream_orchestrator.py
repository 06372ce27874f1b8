"""Drive one diagnosis request through every stage and emit its progress events."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from models.diagnosis_models import (
	EVENT_STAGE,
	AnalysisSession,
	ConsolidatedResult,
	DiseaseFinding,
	EventType,
	IdentificationResult,
	ProgressEvent,
	Stage,
	TreatmentSet,
	TREATMENT_CATEGORIES,
)
from services.diagnosis.advisory_synthesizer import AdvisorySynthesizer, fallback_advisory, severity_for
from services.diagnosis.errors import IdentificationError, ImageReferenceError
from services.diagnosis.plant_identifier import resolve_plant_name
from services.diagnosis.treatment_aggregator import TreatmentAggregator
from utils.image_validation import validate_image_ref
from utils.settings import DiagnosisSettings

Step = Tuple[EventType, Dict[str, Any]]

CATEGORY_EVENTS = {
	"chemical": EventType.TREATMENTS_CHEMICAL,
	"biological": EventType.TREATMENTS_BIOLOGICAL,
	"cultural": EventType.TREATMENTS_CULTURAL,
}

CATEGORY_MESSAGES = {
	"chemical": "Đã tìm thấy {count} thuốc hóa học",
	"biological": "Đã tìm thấy {count} phương pháp sinh học",
	"cultural": "Đã tìm thấy {count} biện pháp canh tác",
}


class DiagnosisOrchestrator:
	"""Run the diagnosis pipeline for one image and yield ProgressEvents.

	Identification is required: a validation failure, an identification
	failure or timeout, or a photo with no recognizable plant ends the run
	with an `error` event. Everything after identification is best-effort and
	bounded by the overall request deadline.
	"""

	def __init__(
		self,
		identifier,
		aggregator: TreatmentAggregator,
		synthesizer: AdvisorySynthesizer,
		settings: DiagnosisSettings,
	) -> None:
		if identifier is None or aggregator is None or synthesizer is None:
			raise ValueError("identifier, aggregator and synthesizer are required.")
		self.identifier = identifier
		self.aggregator = aggregator
		self.synthesizer = synthesizer
		self.settings = settings

	async def run(
		self,
		image_ref: Any,
		is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
	) -> AsyncIterator[ProgressEvent]:
		"""Yield the session's events, ending with exactly one `complete` or `error`.

		`is_disconnected` is awaited before every emission; once it returns
		True the run stops without emitting anything else.
		"""
		session = AnalysisSession(session_id=uuid4().hex, image_ref=str(image_ref or "")[:200])
		loop = asyncio.get_running_loop()
		deadline = loop.time() + self.settings.request_timeout
		seq = 0
		steps = self._stages(session, image_ref, deadline)
		try:
			while True:
				try:
					event_type, payload = await steps.__anext__()
				except StopAsyncIteration:
					return
				except ImageReferenceError as exc:
					logging.warning("Session %s rejected image reference: %s", session.session_id, exc)
					event_type, payload = EventType.ERROR, {"error": str(exc), "code": "invalid_image"}
				except IdentificationError as exc:
					logging.error("Session %s identification failed: %s", session.session_id, exc)
					code = "unidentified" if exc.unidentified else "identification_failed"
					event_type, payload = EventType.ERROR, {"error": str(exc), "code": code}
				except Exception as exc:
					logging.exception("Session %s failed unexpectedly", session.session_id)
					event_type, payload = EventType.ERROR, {"error": f"Phân tích thất bại: {exc}", "code": "internal"}

				if is_disconnected is not None and await is_disconnected():
					logging.info("Session %s: client disconnected at stage %s", session.session_id, session.stage.name)
					return

				if event_type is EventType.COMPLETE:
					session.advance(Stage.FINALIZING)
					session.advance(Stage.COMPLETE)
				else:
					session.advance(EVENT_STAGE[event_type])
				seq += 1
				yield ProgressEvent(type=event_type, payload=payload, seq=seq)
				if event_type in (EventType.COMPLETE, EventType.ERROR):
					logging.info(
						"Session %s finished with %s after %.3fs (%d events)",
						session.session_id,
						event_type.value,
						time.time() - session.started_at,
						seq,
					)
					return
		finally:
			await steps.aclose()

	async def _stages(self, session: AnalysisSession, image_ref: Any, deadline: float) -> AsyncIterator[Step]:
		image_url = validate_image_ref(image_ref)
		yield EventType.CONNECTED, {"message": "Hình ảnh hợp lệ, bắt đầu phân tích"}

		yield EventType.PLANT_ID, {"message": "Đang gọi dịch vụ nhận diện cây trồng..."}
		identification = await self._identify(image_url, deadline)
		plant = identification.plant
		if plant is None:
			raise IdentificationError("Không nhận diện được cây trồng trong ảnh", unidentified=True)
		plant_name = resolve_plant_name(plant)
		yield EventType.PLANT_IDENTIFIED, {
			"plant": plant.to_dict(),
			"message": f"Đã nhận diện: {plant.common_name or 'Cây trồng'}",
		}

		yield EventType.DISEASE_FOUND, {"message": "Đang kiểm tra bệnh..."}
		diseases: List[DiseaseFinding] = list(identification.diseases)
		for index, finding in enumerate(diseases):
			yield EventType.DISEASE_FOUND, {
				"disease": finding.to_dict(),
				"index": index,
				"total": len(diseases),
				"message": f"Phát hiện bệnh: {finding.name} ({round(finding.confidence * 100)}%)",
			}

		session.advance(Stage.TREATMENT_LOOKUP)
		treatments: Dict[str, TreatmentSet] = {}
		for finding in diseases:
			treatment_set = await self._best_effort(
				self.aggregator.lookup(finding.name, plant_name),
				deadline,
				TreatmentSet(unavailable=TREATMENT_CATEGORIES),
				f"treatment lookup for '{finding.name}'",
			)
			treatments[finding.name] = treatment_set
			for category in TREATMENT_CATEGORIES:
				if category in treatment_set.unavailable:
					continue
				items = treatment_set.items_for(category)
				yield CATEGORY_EVENTS[category], {
					"disease": finding.name,
					"treatments": items,
					"count": len(items),
					"message": CATEGORY_MESSAGES[category].format(count=len(items)),
				}

		care = await self._best_effort(self.aggregator.care_guide(plant_name), deadline, [], "care guide")
		if diseases:
			yield EventType.CARE, {"care": care, "healthy": False, "message": "Đã lấy thông tin chăm sóc"}
		else:
			yield EventType.CARE, {"care": care, "healthy": True, "message": "Không phát hiện bệnh. Cây đang khỏe mạnh!"}

		advisory: Optional[str] = None
		if diseases:
			session.advance(Stage.ADVISORY)
			dominant = max(diseases, key=lambda finding: finding.confidence)
			dominant_set = treatments.get(dominant.name, TreatmentSet())
			advisory = await self._advise(dominant, plant_name, dominant_set, deadline)
			yield EventType.ADVISORY, {
				"disease": dominant.name,
				"severity": severity_for(dominant.confidence),
				"advisory": advisory,
				"message": f"Đã tạo lời khuyên cho: {dominant.name}",
			}

		result = ConsolidatedResult(
			plant=plant,
			diseases=diseases,
			treatments=treatments,
			care=care,
			advisory=advisory,
			image_url=image_url,
		)
		yield EventType.COMPLETE, {"result": result.to_dict(), "message": "Phân tích hoàn tất!"}

	async def _identify(self, image_url: str, deadline: float) -> IdentificationResult:
		timeout = min(self.settings.identify_timeout, self._remaining(deadline))
		start = time.time()
		try:
			return await asyncio.wait_for(self.identifier.identify(image_url), timeout=timeout)
		except asyncio.TimeoutError as exc:
			raise IdentificationError(f"Plant identification timed out after {timeout:.1f}s") from exc
		finally:
			logging.info("Identification stage took %.3fs", time.time() - start)

	async def _advise(self, finding: DiseaseFinding, plant_name: Optional[str], treatments: TreatmentSet, deadline: float) -> str:
		return await self._best_effort(
			self.synthesizer.synthesize(finding.name, finding.confidence, plant_name, treatments),
			deadline,
			fallback_advisory(finding.name, finding.confidence, treatments),
			f"advisory for '{finding.name}'",
		)

	async def _best_effort(self, awaitable: Awaitable[Any], deadline: float, default: Any, label: str) -> Any:
		remaining = self._remaining(deadline)
		if remaining <= 0:
			if asyncio.iscoroutine(awaitable):
				awaitable.close()
			logging.warning("Request deadline passed before %s; skipping", label)
			return default
		try:
			return await asyncio.wait_for(awaitable, timeout=remaining)
		except asyncio.TimeoutError:
			logging.warning("Request deadline reached during %s", label)
		except Exception as exc:
			logging.warning("%s failed: %s", label.capitalize(), exc)
		return default

	@staticmethod
	def _remaining(deadline: float) -> float:
		return deadline - asyncio.get_running_loop().time()
