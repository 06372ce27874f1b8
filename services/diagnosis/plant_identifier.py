"""Plant.id v3 identification adapter."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from models.diagnosis_models import DiseaseFinding, IdentificationResult, PlantCandidate
from services.diagnosis.errors import IdentificationError


def _clamp(value: Any) -> float:
	try:
		number = float(value)
	except (TypeError, ValueError):
		return 0.0
	return min(max(number, 0.0), 1.0)


class PlantIdIdentifier:
	"""Identify a plant and its diseases through the Plant.id HTTP API.

	Remote images are downloaded and sent as data URLs because Plant.id
	expects base64 payloads. The caller bounds the whole call with its own
	timeout; the per-request httpx timeouts only guard individual requests.
	"""

	def __init__(
		self,
		http_client: httpx.AsyncClient,
		*,
		api_key: str,
		base_url: str = "https://plant.id/api/v3",
		image_fetch_timeout: float = 15.0,
		request_timeout: float = 30.0,
		disease_min_confidence: float = 0.05,
		max_diseases: int = 3,
	) -> None:
		if http_client is None:
			raise ValueError("httpx.AsyncClient is required.")
		if not api_key:
			raise ValueError("Plant.id API key is required.")
		self.http = http_client
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.image_fetch_timeout = image_fetch_timeout
		self.request_timeout = request_timeout
		self.disease_min_confidence = disease_min_confidence
		self.max_diseases = max_diseases

	async def identify(self, image_ref: str) -> IdentificationResult:
		"""Return the top plant candidate and disease findings for an image."""
		start = time.time()
		image_data = await self._as_data_url(image_ref)
		try:
			response = await self.http.post(
				f"{self.base_url}/identification",
				json={
					"images": [image_data],
					"similar_images": True,
					"health": "all",
					"classification_level": "all",
				},
				params={"details": "common_names,description", "language": "vi"},
				headers={"Api-Key": self.api_key},
				timeout=self.request_timeout,
			)
		except httpx.HTTPError as exc:
			logging.error("Plant.id request failed: %s", exc)
			raise IdentificationError(f"Plant.id API failed: {exc}") from exc

		if response.status_code == 401:
			raise IdentificationError("Invalid Plant.id API key")
		if response.status_code == 429:
			raise IdentificationError("Plant.id API rate limit exceeded")
		if response.status_code >= 400:
			raise IdentificationError(f"Plant.id API failed with status {response.status_code}")

		try:
			payload = response.json()
		except ValueError as exc:
			raise IdentificationError("Plant.id API returned invalid JSON") from exc

		result = self.parse(payload)
		logging.info(
			"Plant.id identification latency: %.3fs (plant=%s, diseases=%d)",
			time.time() - start,
			result.plant.common_name if result.plant else None,
			len(result.diseases),
		)
		return result

	def parse(self, payload: Dict[str, Any]) -> IdentificationResult:
		"""Convert a Plant.id response body into an IdentificationResult."""
		result = (payload or {}).get("result") or {}
		is_plant = (result.get("is_plant") or {}).get("binary", True)
		suggestions = (result.get("classification") or {}).get("suggestions") or []
		if not is_plant or not suggestions:
			return IdentificationResult(plant=None)

		top = suggestions[0]
		details = top.get("details") or {}
		common_names = details.get("common_names") or []
		plant = PlantCandidate(
			common_name=(common_names[0] if common_names else None) or top.get("name") or "",
			scientific_name=top.get("name"),
			confidence=_clamp(top.get("probability")),
		)
		if not plant.common_name:
			return IdentificationResult(plant=None)

		diseases: List[DiseaseFinding] = []
		is_healthy = (result.get("is_healthy") or {}).get("binary", True)
		if not is_healthy:
			for suggestion in (result.get("disease") or {}).get("suggestions") or []:
				confidence = _clamp(suggestion.get("probability"))
				name = (suggestion.get("name") or "").strip()
				if not name or confidence < self.disease_min_confidence:
					continue
				description = ((suggestion.get("details") or {}).get("description")) or None
				diseases.append(DiseaseFinding(name=name, confidence=confidence, description=description))
				if len(diseases) >= self.max_diseases:
					break
		return IdentificationResult(plant=plant, diseases=diseases)

	async def _as_data_url(self, image_ref: str) -> str:
		if image_ref[:10].lower() == "data:image":
			header, _, payload = image_ref.partition(",")
			return f"{header.lower()},{payload}"
		logging.info("Fetching image from URL: %s", image_ref[:80])
		try:
			response = await self.http.get(image_ref, timeout=self.image_fetch_timeout, follow_redirects=True)
			response.raise_for_status()
		except httpx.HTTPError as exc:
			raise IdentificationError(f"Failed to load image from URL: {exc}") from exc
		content_type = response.headers.get("content-type", "image/jpeg").split(";", 1)[0].strip() or "image/jpeg"
		if not content_type.startswith("image/"):
			raise IdentificationError(f"URL did not return an image (content-type {content_type})")
		encoded = base64.b64encode(response.content).decode("ascii")
		return f"data:{content_type};base64,{encoded}"


def resolve_plant_name(plant: Optional[PlantCandidate]) -> Optional[str]:
	"""Return the name used for store lookups, preferring the common name."""
	if plant is None:
		return None
	return plant.common_name or plant.scientific_name
