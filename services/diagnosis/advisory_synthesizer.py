"""Severity-tiered treatment advisory built on OpenAI Responses.

The model only picks and orders steps from the retrieved treatment names
(a strict function tool whose text fields are enums) and a follow-up interval.
All prose is rendered here from the retrieved records, so every treatment
named in the advisory comes from the TreatmentSet handed in by the aggregator.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from models.diagnosis_models import TreatmentSet
from services.diagnosis.prompts import SEVERITY_LABELS, advisory_system_prompt, advisory_user_prompt
from services.diagnosis.response_parser import extract_usage, parse_tool_arguments

FUNCTION_NAME = "compose_treatment_plan"

SEVERE_THRESHOLD = 0.6
MODERATE_THRESHOLD = 0.4

TIER_SEQUENCE = {
	"severe": ["chemical", "biological", "cultural"],
	"moderate": ["biological", "cultural", "chemical"],
	"mild": ["cultural", "biological"],
}

CATEGORY_TITLES = {
	"chemical": "Thuốc hóa học",
	"biological": "Phương pháp sinh học",
	"cultural": "Biện pháp canh tác",
}

# Plan lines look like "1. **Score 250EC** (Thuốc hóa học): ..."
PLAN_STEP_RE = re.compile(r"^\d+\. \*\*(?P<name>.+?)\*\* \(", re.MULTILINE)

_EMPHASIS_RE = re.compile(r"\*\*|__")

TIER_ASSESSMENTS = {
	"severe": "Bệnh đang ở mức nặng, cần xử lý ngay bằng thuốc đặc trị rồi chuyển sang biện pháp sinh học và canh tác.",
	"moderate": "Bệnh ở mức trung bình, ưu tiên biện pháp sinh học kết hợp canh tác; chỉ dùng thuốc hóa học khi cần.",
	"mild": "Bệnh ở mức nhẹ, tập trung vào biện pháp canh tác và tăng sức đề kháng cho cây.",
}

# Retrieved item fields shown after each plan step, per category.
STEP_DETAIL_FIELDS = {
	"chemical": (("dosage", "Liều lượng"), ("usage", "Cách dùng"), ("frequency", "Tần suất")),
	"biological": (("materials", "Vật liệu"), ("description", "Cách làm"), ("timeframe", "Thời gian")),
	"cultural": (("description", None),),
}

MIN_FOLLOW_UP_DAYS = 3
MAX_FOLLOW_UP_DAYS = 30


def severity_for(confidence: float) -> str:
	"""Map a disease confidence to severe, moderate or mild."""
	if confidence > SEVERE_THRESHOLD:
		return "severe"
	if confidence > MODERATE_THRESHOLD:
		return "moderate"
	return "mild"


def referenced_treatments(advisory: str) -> List[str]:
	"""Return the treatment names listed in the plan section of an advisory."""
	return [match.group("name") for match in PLAN_STEP_RE.finditer(advisory or "")]


def fallback_advisory(disease: str, confidence: float, treatments: TreatmentSet) -> str:
	"""Deterministic summary used whenever generation is unavailable."""
	return (
		f"### 📋 Phương án điều trị cho bệnh {disease}\n\n"
		f"**Mức độ:** {round(confidence * 100)}%\n\n"
		"Hệ thống tìm thấy:\n"
		f"- 📦 {len(treatments.chemical)} thuốc hóa học\n"
		f"- 🌿 {len(treatments.biological)} phương pháp sinh học\n"
		f"- 🌾 {len(treatments.cultural)} biện pháp canh tác\n\n"
		"_Vui lòng xem chi tiết ở các mục bên dưới._"
	)


def _function_definition(categories: List[str], names: List[str]) -> Dict[str, Any]:
	# Only enums and a number: nothing the model returns is copied into the advisory as text.
	return {
		"type": "function",
		"name": FUNCTION_NAME,
		"description": "Choose and order treatment steps from the supplied treatments.",
		"parameters": {
			"type": "object",
			"properties": {
				"steps": {
					"type": "array",
					"items": {
						"type": "object",
						"properties": {
							"category": {"type": "string", "enum": categories},
							"treatment_name": {"type": "string", "enum": names},
						},
						"required": ["category", "treatment_name"],
						"additionalProperties": False,
					},
				},
				"follow_up_days": {"type": "integer"},
			},
			"required": ["steps", "follow_up_days"],
			"additionalProperties": False,
		},
		"strict": True,
	}


def _step_detail(category: str, item: Dict[str, Any]) -> str:
	parts = []
	for key, label in STEP_DETAIL_FIELDS[category]:
		value = _plain(item.get(key))
		if value:
			parts.append(f"{label}: {value}" if label else value)
	return "; ".join(parts)


def _follow_up_days(value: Any) -> int:
	try:
		days = int(value)
	except (TypeError, ValueError):
		return 7
	return max(MIN_FOLLOW_UP_DAYS, min(MAX_FOLLOW_UP_DAYS, days))


class AdvisorySynthesizer:
	"""Write a Markdown treatment advisory for the dominant disease."""

	def __init__(self, client: AsyncOpenAI, *, model: str = "gpt-5-mini", timeout: float = 20.0) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model
		self.timeout = timeout

	async def synthesize(
		self,
		disease: str,
		confidence: float,
		plant: Optional[str],
		treatments: TreatmentSet,
	) -> str:
		"""Return the advisory text; never raises for upstream failures."""
		severity = severity_for(confidence)
		sequence = [category for category in TIER_SEQUENCE[severity] if treatments.items_for(category)]
		if not sequence:
			return fallback_advisory(disease, confidence, treatments)

		start = time.time()
		try:
			plan = await asyncio.wait_for(
				self._generate(disease, confidence, plant, severity, sequence, treatments),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			logging.warning("Advisory generation for '%s' timed out after %.1fs", disease, self.timeout)
			return fallback_advisory(disease, confidence, treatments)
		except Exception as exc:
			logging.warning("Advisory generation for '%s' failed: %s", disease, exc)
			return fallback_advisory(disease, confidence, treatments)
		logging.info("Advisory generation latency: %.3fs", time.time() - start)

		text = self.render(disease, confidence, plant, severity, sequence, treatments, plan)
		if text is None:
			logging.warning("Advisory for '%s' had no usable plan steps; using fallback", disease)
			return fallback_advisory(disease, confidence, treatments)
		known = set(treatments.item_names())
		if any(name not in known for name in referenced_treatments(text)):
			logging.error("Advisory for '%s' referenced unretrieved treatments; using fallback", disease)
			return fallback_advisory(disease, confidence, treatments)
		return text

	async def _generate(
		self,
		disease: str,
		confidence: float,
		plant: Optional[str],
		severity: str,
		sequence: List[str],
		treatments: TreatmentSet,
	) -> Dict[str, Any]:
		names = [(item.get("name") or "").strip() for category in sequence for item in treatments.items_for(category)]
		names = [name for name in dict.fromkeys(names) if name]
		user_prompt = advisory_user_prompt(
			disease=disease,
			plant=plant or "Cây trồng",
			confidence=confidence,
			severity=severity,
			ordered_categories=sequence,
			treatments={category: treatments.items_for(category) for category in sequence},
		)
		response = await self.client.responses.create(
			model=self.model,
			input=[
				{"type": "message", "role": "system", "content": [{"type": "input_text", "text": advisory_system_prompt()}]},
				{"type": "message", "role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
			],
			tools=[_function_definition(sequence, names)],
			tool_choice={"type": "function", "name": FUNCTION_NAME},
		)
		usage = extract_usage(response)
		logging.info("Advisory usage: %s input / %s output tokens", usage["input_tokens"], usage["output_tokens"])
		return parse_tool_arguments(response, FUNCTION_NAME)

	@staticmethod
	def render(
		disease: str,
		confidence: float,
		plant: Optional[str],
		severity: str,
		sequence: List[str],
		treatments: TreatmentSet,
		plan: Dict[str, Any],
	) -> Optional[str]:
		"""Render the plan as Markdown from the retrieved records.

		The model contributes only the choice and order of steps and the
		follow-up interval. Steps naming unknown treatments are dropped;
		returns None when no step survives.
		"""
		allowed = {
			category: {(item.get("name") or "").strip(): item for item in treatments.items_for(category)}
			for category in sequence
		}
		steps = []
		seen = set()
		for step in plan.get("steps") or []:
			if not isinstance(step, dict):
				continue
			category = step.get("category")
			name = (step.get("treatment_name") or "").strip()
			if not name or category not in allowed or name not in allowed[category]:
				logging.warning("Dropping advisory step with unretrieved treatment %r (%s)", name, category)
				continue
			if (category, name) in seen:
				continue
			seen.add((category, name))
			steps.append((sequence.index(category), name, category, allowed[category][name]))
		if not steps:
			return None
		steps.sort(key=lambda entry: entry[0])

		lines = [
			f"### 📋 Phương án điều trị: {disease}" + (f" trên {plant}" if plant else ""),
			"",
			f"**Mức độ:** {SEVERITY_LABELS[severity]} ({round(confidence * 100)}%)",
			"",
			TIER_ASSESSMENTS[severity],
			"",
			"#### Lộ trình điều trị",
		]
		for index, (_, name, category, item) in enumerate(steps, start=1):
			detail = _step_detail(category, item)
			lines.append(f"{index}. **{name}** ({CATEGORY_TITLES[category]})" + (f": {detail}" if detail else ""))

		notes = []
		for _, name, category, item in steps:
			if category != "chemical":
				continue
			notes.extend(_plain(note) for note in item.get("precautions") or [] if _plain(note))
			isolation = _plain(item.get("isolationPeriod"))
			if isolation:
				notes.append(f"Thời gian cách ly của {name}: {isolation}")
		if notes:
			lines.extend(["", "#### Lưu ý an toàn"])
			lines.extend(f"- {note}" for note in dict.fromkeys(notes))

		days = _follow_up_days(plan.get("follow_up_days"))
		lines.extend(["", "#### Theo dõi hiệu quả", f"Kiểm tra lại lá non và vết bệnh sau {days} ngày."])
		return "\n".join(lines)
