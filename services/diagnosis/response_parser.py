"""Helpers to extract structured data from Responses API output."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional


def parse_tool_arguments(response: Any, tool_name: str) -> Dict[str, Any]:
	"""Return the decoded arguments of the named function call."""
	for item in getattr(response, "output", None) or []:
		if getattr(item, "type", None) != "function_call":
			continue
		if getattr(item, "name", None) != tool_name:
			continue
		args = json.loads(getattr(item, "arguments", "{}") or "{}")
		if not isinstance(args, dict):
			raise RuntimeError(f"Arguments for '{tool_name}' are not a JSON object.")
		return args
	raise RuntimeError(f"No function_call output for '{tool_name}' found in response.")


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
	"""Return token usage if present."""
	usage = getattr(response, "usage", None)
	return {
		"input_tokens": getattr(usage, "input_tokens", None) if usage else None,
		"output_tokens": getattr(usage, "output_tokens", None) if usage else None,
	}
