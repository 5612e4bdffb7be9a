from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from ground.backend import constants
from ground.backend.errors import ValidationFailed
from ground.backend.state.types import EvidenceItem, EvidenceSource, SelectionRange


_SEVERITY_LABELS = {1: "Error", 2: "Warning", 3: "Info", 4: "Hint"}
_SEVERITY_RANKS = {"error": 1, "warning": 2, "info": 3, "information": 3, "hint": 4}


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_evidence_id() -> str:
	return f"ev_{uuid.uuid4().hex}"


def make_evidence(
	*,
	type: str,
	title: str,
	ref: str,
	why_included: str,
	snippet: Optional[str] = None,
	source: EvidenceSource = "user",
	created_at: Optional[str] = None,
) -> EvidenceItem:
	if type not in constants.EVIDENCE_TYPES:
		raise ValidationFailed(f"Unknown evidence type: {type!r}")
	if source not in constants.EVIDENCE_SOURCES:
		raise ValidationFailed(f"Unknown evidence source: {source!r}")
	return EvidenceItem(
		id=new_evidence_id(),
		type=type,
		title=title,
		ref=ref,
		snippet=snippet,
		why_included=why_included,
		created_at=created_at or _now_iso(),
		source=source,
	)


def format_ref_from_range(path: str, selection: SelectionRange) -> str:
	"""``path:start-end`` with 1-based lines; selections arrive 0-based."""
	return f"{path}:{selection.start_line + 1}-{selection.end_line + 1}"


def selection_evidence(path: str, selection: SelectionRange, text: str, *, source: EvidenceSource = "user") -> EvidenceItem:
	return make_evidence(
		type="selection",
		title="Selected code snippet",
		ref=format_ref_from_range(path, selection),
		snippet=text[: constants.SELECTION_SNIPPET_MAX_CHARS],
		why_included="User-selected suspicious or relevant code region.",
		source=source,
	)


def active_file_evidence(path: str, *, source: EvidenceSource = "user") -> EvidenceItem:
	return make_evidence(
		type="file",
		title="Active file",
		ref=path,
		why_included="File currently being edited; likely relevant context.",
		source=source,
	)


def pasted_log_evidence(text: str) -> Optional[EvidenceItem]:
	cleaned = text.strip() if isinstance(text, str) else ""
	if not cleaned:
		return None
	return make_evidence(
		type="testLog",
		title="Test/Build log (pasted)",
		ref=f"testlog:paste:{_now_iso()}",
		snippet=cleaned[: constants.TEST_LOG_SNIPPET_MAX_CHARS],
		why_included="Repro/failure evidence that can guide debugging and verification.",
		source="user",
	)


@dataclass(frozen=True)
class Diagnostic:
	"""A flattened editor diagnostic. ``line`` and ``character`` are 0-based."""

	uri: str
	line: int
	character: int
	severity: int
	message: str
	source: Optional[str] = None


def severity_rank(severity: object) -> int:
	if isinstance(severity, bool):
		return 99
	if isinstance(severity, int):
		return severity if severity in _SEVERITY_LABELS else 99
	if isinstance(severity, str):
		return _SEVERITY_RANKS.get(severity.strip().lower(), 99)
	return 99


def severity_label(rank: int) -> str:
	return _SEVERITY_LABELS.get(rank, "Unknown")


def _diagnostic_evidence(diagnostic: Diagnostic, why_included: str) -> EvidenceItem:
	return make_evidence(
		type="diagnostic",
		title=f"{severity_label(diagnostic.severity)}: {diagnostic.message}",
		ref=f"{diagnostic.uri}:{diagnostic.line + 1}:{diagnostic.character + 1}",
		snippet=f"source: {diagnostic.source}" if diagnostic.source else None,
		why_included=why_included,
		source="auto",
	)


def _most_severe(diagnostics: Iterable[Diagnostic], limit: int) -> List[Diagnostic]:
	return sorted(diagnostics, key=lambda diagnostic: diagnostic.severity)[:limit]


def diagnostics_to_evidence(
	diagnostics: Iterable[Diagnostic],
	limit: int = constants.DIAGNOSTICS_TOP_N,
) -> List[EvidenceItem]:
	return [
		_diagnostic_evidence(
			diagnostic,
			"Language server/compiler diagnostic indicates a concrete issue.",
		)
		for diagnostic in _most_severe(diagnostics, limit)
	]


def build_evidence_pack(
	existing: Sequence[EvidenceItem],
	*,
	active_file: Optional[str] = None,
	selection: Optional[SelectionRange] = None,
	selection_text: str = "",
	diagnostics: Iterable[Diagnostic] = (),
) -> List[EvidenceItem]:
	"""Collect raw evidence that is not already present, keyed on ``type:ref``."""
	seen = {f"{item.type}:{item.ref}" for item in existing}
	collected: List[EvidenceItem] = []

	def append_unique(item: EvidenceItem) -> None:
		key = f"{item.type}:{item.ref}"
		if key in seen:
			return
		seen.add(key)
		collected.append(item)

	if active_file:
		append_unique(
			make_evidence(
				type="file",
				title="Active file",
				ref=active_file,
				why_included="Currently edited file for this session.",
				source="auto",
			)
		)
		if selection is not None and selection_text:
			append_unique(
				make_evidence(
					type="selection",
					title="Active selection",
					ref=format_ref_from_range(active_file, selection),
					snippet=selection_text[: constants.SELECTION_SNIPPET_MAX_CHARS],
					why_included="Selected code is likely tied to current implementation scope.",
					source="auto",
				)
			)

	for diagnostic in _most_severe(diagnostics, constants.EVIDENCE_PACK_DIAGNOSTICS_TOP_N):
		append_unique(
			_diagnostic_evidence(
				diagnostic,
				"Diagnostics provide concrete failure points and verification hints.",
			)
		)
	return collected
