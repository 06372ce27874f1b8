"""Plant identification using an OpenAI vision model with function calling."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict

from openai import AsyncOpenAI

from models.diagnosis_models import DiseaseFinding, IdentificationResult, PlantCandidate
from services.diagnosis.errors import IdentificationError
from services.diagnosis.prompts import vision_system_prompt, vision_user_prompt
from services.diagnosis.response_parser import extract_usage, parse_tool_arguments

FUNCTION_NAME = "report_plant_identification"

FUNCTION_DEFINITION: Dict[str, Any] = {
	"type": "function",
	"name": FUNCTION_NAME,
	"description": "Return the identified plant and any suspected diseases with confidences.",
	"parameters": {
		"type": "object",
		"properties": {
			"is_plant": {"type": "boolean"},
			"common_name": {"type": "string"},
			"scientific_name": {"type": "string"},
			"confidence": {"type": "number"},
			"diseases": {
				"type": "array",
				"items": {
					"type": "object",
					"properties": {
						"name": {"type": "string"},
						"confidence": {"type": "number"},
						"description": {"type": "string"},
					},
					"required": ["name", "confidence", "description"],
					"additionalProperties": False,
				},
			},
		},
		"required": ["is_plant", "common_name", "scientific_name", "confidence", "diseases"],
		"additionalProperties": False,
	},
	"strict": True,
}


def _clamp(value: Any) -> float:
	try:
		return min(max(float(value), 0.0), 1.0)
	except (TypeError, ValueError):
		return 0.0


class VisionPlantIdentifier:
	"""Identify plants by asking a vision model to fill a strict function schema."""

	def __init__(
		self,
		client: AsyncOpenAI,
		*,
		model: str = "gpt-5",
		disease_min_confidence: float = 0.05,
		max_diseases: int = 3,
	) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model
		self.disease_min_confidence = disease_min_confidence
		self.max_diseases = max_diseases

	async def identify(self, image_ref: str) -> IdentificationResult:
		"""Return the plant candidate and disease findings for an image URL or data URL."""
		inputs = [
			{"type": "message", "role": "system", "content": [{"type": "input_text", "text": vision_system_prompt()}]},
			{"type": "message", "role": "user", "content": [{"type": "input_text", "text": vision_user_prompt()}]},
			{"type": "message", "role": "user", "content": [{"type": "input_image", "image_url": image_ref}]},
		]

		start = time.time()
		try:
			response = await self.client.responses.create(
				model=self.model,
				input=inputs,
				tools=[FUNCTION_DEFINITION],
				tool_choice={"type": "function", "name": FUNCTION_NAME},
			)
			args = parse_tool_arguments(response, FUNCTION_NAME)
		except Exception as exc:
			logging.error("Error during OpenAI plant identification: %s", exc)
			raise IdentificationError(f"Vision identification failed: {exc}") from exc

		usage = extract_usage(response)
		logging.info(
			"Vision identification latency: %.3fs (%s input / %s output tokens)",
			time.time() - start,
			usage["input_tokens"],
			usage["output_tokens"],
		)
		return self.parse(args)

	def parse(self, args: Dict[str, Any]) -> IdentificationResult:
		"""Convert function-call arguments into an IdentificationResult."""
		common_name = (args.get("common_name") or "").strip()
		if not args.get("is_plant") or not common_name:
			return IdentificationResult(plant=None)

		plant = PlantCandidate(
			common_name=common_name,
			scientific_name=(args.get("scientific_name") or "").strip() or None,
			confidence=_clamp(args.get("confidence")),
		)
		diseases = []
		for entry in args.get("diseases") or []:
			name = (entry.get("name") or "").strip()
			confidence = _clamp(entry.get("confidence"))
			if not name or confidence < self.disease_min_confidence:
				continue
			diseases.append(DiseaseFinding(name=name, confidence=confidence, description=entry.get("description") or None))
		diseases.sort(key=lambda finding: finding.confidence, reverse=True)
		return IdentificationResult(plant=plant, diseases=diseases[: self.max_diseases])
