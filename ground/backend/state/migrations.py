"""Schema normalizers for the persisted session blob.

Generation 1 is the legacy single-session slot: one flat session whose provocation
answers lived under ``decisions`` as ``{status, reason}``. Generation 2 is the
multi-session blob ``{schemaVersion, activeSessionId, sessionsById, sessionOrder}``.
Each generation has one upgrade step; steps are chained by ``schemaVersion`` and
never trust the input shape. Normalizing an already-normalized blob is a no-op.
"""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ground.backend import constants
from ground.backend.state.gate import compute_gate
from ground.backend.state.types import (
	EvidenceInsight,
	EvidenceItem,
	EvidenceSuggestion,
	Outline,
	OUTLINE_ATTRS,
	ProvocationCard,
	ProvocationResponse,
	RepositoryState,
	SelectionRange,
	Session,
	SessionContext,
)


_EPOCH_ISO = "1970-01-01T00:00:00Z"


def _text(value: Any, default: str = "") -> str:
	return value if isinstance(value, str) else default


def _optional_text(value: Any) -> Optional[str]:
	return value if isinstance(value, str) else None


def _choice(value: Any, allowed: Tuple[str, ...], default: Any) -> Any:
	return value if isinstance(value, str) and value in allowed else default


def _int(value: Any, default: int = 0) -> int:
	if isinstance(value, bool):
		return default
	if isinstance(value, int):
		return value
	if isinstance(value, float) and value.is_integer():
		return int(value)
	return default


def _string_list(value: Any) -> Optional[List[str]]:
	if not isinstance(value, list):
		return None
	return [item for item in value if isinstance(item, str)]


def default_title(mode: str, active_file: Optional[str] = None) -> str:
	label = constants.MODE_LABELS.get(mode, "Standard")
	if active_file:
		basename = active_file.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
		if basename:
			return f"{label}: {basename}"
	return f"{label} session"


def parse_selection(raw: Any) -> Optional[SelectionRange]:
	if isinstance(raw, SelectionRange):
		return raw
	if not isinstance(raw, Mapping):
		return None
	return SelectionRange(
		start_line=_int(raw.get("startLine")),
		start_character=_int(raw.get("startCharacter")),
		end_line=_int(raw.get("endLine")),
		end_character=_int(raw.get("endCharacter")),
	)


def parse_context(raw: Any) -> SessionContext:
	if not isinstance(raw, Mapping):
		return SessionContext()
	return SessionContext(
		workspace_folder=_optional_text(raw.get("workspaceFolder")),
		active_file=_optional_text(raw.get("activeFile")),
		selection=parse_selection(raw.get("selection")),
	)


def parse_outline(raw: Any) -> Outline:
	if not isinstance(raw, Mapping):
		return Outline()
	values = {attr: _text(raw.get(key)) for key, attr in OUTLINE_ATTRS.items()}
	return Outline(**values)


def parse_evidence_item(raw: Any, fallback_id: str) -> Optional[EvidenceItem]:
	if not isinstance(raw, Mapping):
		return None
	item_id = _text(raw.get("id")).strip() or fallback_id
	return EvidenceItem(
		id=item_id,
		type=_choice(raw.get("type"), constants.EVIDENCE_TYPES, "link"),
		title=_text(raw.get("title")),
		ref=_text(raw.get("ref")),
		snippet=_optional_text(raw.get("snippet")),
		why_included=_text(raw.get("whyIncluded")),
		created_at=_text(raw.get("createdAt"), _EPOCH_ISO),
		source=_choice(raw.get("source"), constants.EVIDENCE_SOURCES, "user"),
	)


def parse_card(raw: Any) -> Optional[ProvocationCard]:
	if not isinstance(raw, Mapping):
		return None
	card_id = _text(raw.get("id")).strip()
	if not card_id:
		return None
	return ProvocationCard(
		id=card_id,
		kind=_choice(raw.get("kind"), constants.PROVOCATION_KINDS, "Counterexample"),
		title=_text(raw.get("title")),
		body=_text(raw.get("body")),
		severity=_choice(raw.get("severity"), constants.SEVERITIES, None),
		based_on_evidence_ids=_string_list(raw.get("basedOnEvidenceIds")),
		created_at=_text(raw.get("createdAt"), _EPOCH_ISO),
	)


def parse_response(raw: Any) -> Optional[ProvocationResponse]:
	if not isinstance(raw, Mapping):
		return None
	decision = raw.get("decision", raw.get("status"))
	if decision not in constants.DECISIONS:
		return None
	rationale = raw.get("rationale", raw.get("reason"))
	responded_at = raw.get("respondedAt", raw.get("updatedAt", raw.get("createdAt")))
	return ProvocationResponse(
		decision=decision,
		rationale=_text(rationale),
		responded_at=_text(responded_at, _EPOCH_ISO),
	)


def parse_insight(raw: Any) -> Optional[EvidenceInsight]:
	if not isinstance(raw, Mapping):
		return None
	insight_id = _text(raw.get("id")).strip()
	if not insight_id:
		return None
	return EvidenceInsight(
		id=insight_id,
		kind=_choice(raw.get("kind"), constants.INSIGHT_KINDS, "Implementation"),
		title=_text(raw.get("title")),
		body=_text(raw.get("body")),
		queries=_string_list(raw.get("queries")),
		created_at=_text(raw.get("createdAt"), _EPOCH_ISO),
	)


def parse_suggestion(raw: Any) -> Optional[EvidenceSuggestion]:
	if not isinstance(raw, Mapping):
		return None
	suggestion_id = _text(raw.get("id")).strip()
	if not suggestion_id:
		return None
	return EvidenceSuggestion(
		id=suggestion_id,
		action=_choice(raw.get("action"), constants.SUGGESTION_ACTIONS, "addDiagnostics"),
		title=_text(raw.get("title")),
		reason=_text(raw.get("reason")),
		created_at=_text(raw.get("createdAt"), _EPOCH_ISO),
	)


def parse_session(raw: Any, fallback_id: str) -> Optional[Session]:
	if not isinstance(raw, Mapping):
		return None
	session_id = _text(raw.get("id")).strip() or fallback_id
	mode = _choice(raw.get("mode"), constants.SESSION_MODES, "standard")
	context = parse_context(raw.get("context"))
	created_at = _text(raw.get("createdAt"), _EPOCH_ISO)

	evidence: List[EvidenceItem] = []
	seen_evidence: set = set()
	raw_evidence = raw.get("evidence")
	for index, item_raw in enumerate(raw_evidence if isinstance(raw_evidence, list) else []):
		item = parse_evidence_item(item_raw, fallback_id=f"ev_{session_id}_{index}")
		if item is None or item.id in seen_evidence:
			continue
		seen_evidence.add(item.id)
		evidence.append(item)

	cards: List[ProvocationCard] = []
	seen_cards: set = set()
	raw_cards = raw.get("provocations")
	for card_raw in raw_cards if isinstance(raw_cards, list) else []:
		card = parse_card(card_raw)
		if card is None or card.id in seen_cards:
			continue
		seen_cards.add(card.id)
		cards.append(card)

	responses: Dict[str, ProvocationResponse] = {}
	raw_responses = raw.get("provocationResponses")
	if isinstance(raw_responses, Mapping):
		for card_id, response_raw in raw_responses.items():
			if card_id not in seen_cards:
				continue
			response = parse_response(response_raw)
			if response is not None:
				responses[card_id] = response

	raw_insights = raw.get("evidenceInsights")
	insights = [
		insight
		for insight in (parse_insight(item) for item in (raw_insights if isinstance(raw_insights, list) else []))
		if insight is not None
	]
	raw_suggestions = raw.get("evidenceSuggestions")
	suggestions = [
		suggestion
		for suggestion in (
			parse_suggestion(item) for item in (raw_suggestions if isinstance(raw_suggestions, list) else [])
		)
		if suggestion is not None
	]

	title = _text(raw.get("title")).strip() or default_title(mode, context.active_file)
	session = Session(
		id=session_id,
		title=title,
		mode=mode,
		created_at=created_at,
		updated_at=_text(raw.get("updatedAt"), created_at),
		archived=raw.get("archived") is True,
		context=context,
		outline=parse_outline(raw.get("outline")),
		evidence=evidence,
		provocations=cards,
		provocation_responses=responses,
		evidence_insights=insights,
		evidence_suggestions=suggestions,
	)
	session.gate = compute_gate(session)
	return session


def _upgrade_v1_session(raw: Mapping[str, Any]) -> Dict[str, Any]:
	session = dict(raw)
	if "provocationResponses" not in session and isinstance(session.get("decisions"), Mapping):
		session["provocationResponses"] = dict(session["decisions"])
	session.pop("decisions", None)
	session.pop("gate", None)
	if not _text(session.get("id")).strip():
		session["id"] = f"sess_{uuid.uuid4().hex}"
	return session


def _upgrade_v1_state(raw: Mapping[str, Any]) -> Dict[str, Any]:
	session = _upgrade_v1_session(raw)
	session_id = session["id"]
	return {
		"schemaVersion": 2,
		"activeSessionId": session_id,
		"sessionsById": {session_id: session},
		"sessionOrder": [session_id],
	}


_UPGRADES: Tuple[Tuple[int, Callable[[Mapping[str, Any]], Dict[str, Any]]], ...] = (
	(1, _upgrade_v1_state),
)


def _schema_version(raw: Mapping[str, Any]) -> int:
	version = raw.get("schemaVersion")
	if isinstance(version, int) and not isinstance(version, bool):
		return version
	if "sessionsById" in raw or "sessionOrder" in raw:
		return 2
	return 1


def _normalize_v2_state(raw: Mapping[str, Any]) -> RepositoryState:
	sessions: Dict[str, Session] = {}
	raw_sessions = raw.get("sessionsById")
	if isinstance(raw_sessions, Mapping):
		for key, session_raw in raw_sessions.items():
			if not isinstance(key, str) or not key:
				continue
			session = parse_session(session_raw, fallback_id=key)
			if session is None:
				continue
			if session.id != key:
				session.id = key
			sessions[key] = session

	order: List[str] = []
	raw_order = raw.get("sessionOrder")
	for session_id in raw_order if isinstance(raw_order, list) else []:
		if isinstance(session_id, str) and session_id in sessions and session_id not in order:
			order.append(session_id)
	missing = [session_id for session_id in sessions if session_id not in order]
	missing.sort(key=lambda session_id: sessions[session_id].updated_at, reverse=True)
	order.extend(missing)

	active = raw.get("activeSessionId")
	if active is not None:
		candidate = sessions.get(active) if isinstance(active, str) else None
		if candidate is None or candidate.archived:
			active = next((session_id for session_id in order if not sessions[session_id].archived), None)

	return RepositoryState(active_session_id=active, sessions_by_id=sessions, session_order=order)


def normalize_state(raw: Any) -> RepositoryState:
	if not isinstance(raw, Mapping):
		return RepositoryState()
	blob: Mapping[str, Any] = raw
	version = _schema_version(blob)
	for from_version, upgrade in _UPGRADES:
		if version == from_version:
			blob = upgrade(blob)
			version = from_version + 1
	return _normalize_v2_state(blob)


def wrap_legacy_session(raw: Any) -> Optional[RepositoryState]:
	if not isinstance(raw, Mapping):
		return None
	return normalize_state(_upgrade_v1_state(raw))


def serialize_state(state: RepositoryState) -> Dict[str, Any]:
	payload = state.as_dict()
	return {"schemaVersion": constants.STATE_SCHEMA_VERSION, **payload}
