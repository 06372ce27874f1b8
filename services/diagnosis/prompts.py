"""Prompt helpers for plant identification and treatment advisory."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

SEVERITY_LABELS = {"severe": "NẶNG", "moderate": "TRUNG BÌNH", "mild": "NHẸ"}

TIER_GUIDANCE = {
	"severe": (
		"Disease pressure is high. Start with ONE chemical product for the first 3-7 days, "
		"follow with a biological method after 7-14 days, and keep 2-3 cultural practices for long-term control."
	),
	"moderate": (
		"Disease pressure is moderate. Prefer a biological method first and support it with cultural practices. "
		"Mention a chemical product only as a fallback if biological control fails after 7-10 days."
	),
	"mild": (
		"Disease pressure is low. Rely on the three most important cultural practices and support plant "
		"resistance with a biological method. Do not recommend chemical products."
	),
}


def vision_system_prompt() -> str:
	"""Return the plant identification system prompt."""
	return (
		"You are an experienced plant pathologist identifying crops and their diseases from field photos. "
		"Name the plant conservatively, report calibrated confidences between 0 and 1, "
		"and only list diseases with visible symptoms."
	)


def vision_user_prompt() -> str:
	"""Return the user prompt sent with the plant photo."""
	return (
		"Identify the plant in the image. Give its Vietnamese common name and scientific name. "
		"If the image does not show a plant, set is_plant to false. "
		"List up to three suspected diseases using Vietnamese disease names with a one-line description each; "
		"return an empty list for a healthy plant."
	)


def advisory_system_prompt() -> str:
	"""Return the treatment advisory system prompt."""
	return (
		"You are a Vietnamese plant protection specialist planning treatments for farmers. "
		"You may only recommend treatments from the supplied lists and must refer to them by their exact names. "
		"Answer in Vietnamese."
	)


def _numbered(items: Sequence[Dict[str, Any]], detail_key: str | None = None) -> str:
	if not items:
		return "Không có dữ liệu"
	lines = []
	for index, item in enumerate(items, start=1):
		detail = item.get(detail_key) if detail_key else None
		lines.append(f"{index}. {item.get('name')}" + (f" ({detail})" if detail else ""))
	return "\n".join(lines)


def advisory_user_prompt(
	*,
	disease: str,
	plant: str,
	confidence: float,
	severity: str,
	ordered_categories: List[str],
	treatments: Dict[str, List[Dict[str, Any]]],
) -> str:
	"""Return the advisory request grounded in the retrieved treatments."""
	return (
		f"Cây trồng: {plant}\n"
		f"Bệnh: {disease}\n"
		f"Mức độ tin cậy: {round(confidence * 100)}% (Đánh giá: {SEVERITY_LABELS[severity]})\n\n"
		f"THUỐC HÓA HỌC ({len(treatments.get('chemical', []))} sản phẩm):\n"
		f"{_numbered(treatments.get('chemical', []), 'activeIngredient')}\n\n"
		f"PHƯƠNG PHÁP SINH HỌC ({len(treatments.get('biological', []))} phương pháp):\n"
		f"{_numbered(treatments.get('biological', []), 'timeframe')}\n\n"
		f"BIỆN PHÁP CANH TÁC ({len(treatments.get('cultural', []))} kỹ thuật):\n"
		f"{_numbered(treatments.get('cultural', []), 'description')}\n\n"
		f"{TIER_GUIDANCE[severity]}\n"
		f"Order the plan steps by category: {', '.join(ordered_categories)}. "
		"Pick the steps by their exact listed names and choose how many days to wait before checking "
		"whether the treatment is working. Never invent a product or technique that is not listed."
	)
