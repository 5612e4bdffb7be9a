from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from ground.backend.errors import MalformedModelOutput


_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _parse_object(candidate: str) -> Optional[Dict[str, Any]]:
	try:
		parsed = json.loads(candidate)
	except (json.JSONDecodeError, ValueError):
		return None
	if not isinstance(parsed, dict):
		return None
	return parsed


def extract_json_object(text: str) -> Dict[str, Any]:
	"""Pull a JSON object out of free-form model output.

	Tried in order: the whole text, the first fenced block, then the span from the
	first ``{`` to the last ``}``. A parse that yields anything other than an object
	counts as a miss.
	"""
	raw = text if isinstance(text, str) else ""

	parsed = _parse_object(raw)
	if parsed is not None:
		return parsed

	fenced = _FENCED_BLOCK_RE.search(raw)
	if fenced:
		parsed = _parse_object(fenced.group(1).strip())
		if parsed is not None:
			return parsed

	start = raw.find("{")
	end = raw.rfind("}")
	if start != -1 and end > start:
		parsed = _parse_object(raw[start : end + 1])
		if parsed is not None:
			return parsed

	raise MalformedModelOutput("Model did not return a JSON object.")
