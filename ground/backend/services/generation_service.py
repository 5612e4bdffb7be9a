from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from starlette.concurrency import run_in_threadpool

from ground.backend import constants
from ground.backend.ai.cancellation import CancelToken
from ground.backend.ai.json_extract import extract_json_object
from ground.backend.ai.ollama_client import ChatMessage, DeltaCallback, OllamaClient
from ground.backend.errors import SchemaViolation
from ground.backend.state.session_store import SessionStore
from ground.backend.state.types import (
	EvidenceInsight,
	EvidenceSuggestion,
	ProvocationCard,
	Session,
)


logger = logging.getLogger(__name__)

_PayloadModel = TypeVar("_PayloadModel", bound=BaseModel)

PROVOCATION_SYSTEM_PROMPT = (
	"You generate provocation cards for engineering review.\n"
	'Return JSON only in this schema: {"cards":[{"kind":"Counterexample|Hidden Assumption|'
	'Trade-off|Security|Performance|Test Gap","title":"string","body":"string",'
	'"severity":"low|med|high"}]}.\n'
	"Constraints: exactly 5 cards, concise but specific, no markdown, no prose outside JSON."
)

INSIGHT_SYSTEM_PROMPT = (
	"You are generating AI Evidence Insights for a coding session.\n"
	'Return JSON only with schema: {"insights":[{"kind":"Implementation|Risk|Test|Performance|'
	'Security|Search","title":"string","body":"string","queries":["string"]}],'
	'"suggestedRawEvidence":[{"action":"addActiveFile|addSelection|addDiagnostics|ingestTestLog",'
	'"title":"string","reason":"string"}]}.\n'
	"Rules: 6-8 insights, concise and actionable, grounded in provided outline/evidence, "
	"include search queries when useful."
)

DEFAULT_SUGGESTION_TITLE = "Suggested raw evidence"
DEFAULT_SUGGESTION_REASON = "Additional context may be needed for higher confidence."


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _new_id(prefix: str, index: int) -> str:
	return f"{prefix}_{uuid.uuid4().hex[:10]}_{index}"


def _required_text(value: Any) -> str:
	if not isinstance(value, str) or not value.strip():
		raise ValueError("missing title/body")
	return value.strip()


class CardPayload(BaseModel):
	model_config = ConfigDict(extra="ignore")

	kind: str = "Counterexample"
	title: str
	body: str
	severity: str = "med"

	@field_validator("kind", mode="before")
	@classmethod
	def _known_kind(cls, value: Any) -> str:
		return value if isinstance(value, str) and value in constants.PROVOCATION_KINDS else "Counterexample"

	@field_validator("severity", mode="before")
	@classmethod
	def _known_severity(cls, value: Any) -> str:
		return value if isinstance(value, str) and value in constants.SEVERITIES else "med"

	@field_validator("title", "body", mode="before")
	@classmethod
	def _non_blank(cls, value: Any) -> str:
		return _required_text(value)


class InsightPayload(BaseModel):
	model_config = ConfigDict(extra="ignore")

	kind: str = "Implementation"
	title: str
	body: str
	queries: Optional[List[str]] = None

	@field_validator("kind", mode="before")
	@classmethod
	def _known_kind(cls, value: Any) -> str:
		return value if isinstance(value, str) and value in constants.INSIGHT_KINDS else "Implementation"

	@field_validator("title", "body", mode="before")
	@classmethod
	def _non_blank(cls, value: Any) -> str:
		return _required_text(value)

	@field_validator("queries", mode="before")
	@classmethod
	def _text_queries(cls, value: Any) -> Optional[List[str]]:
		if not isinstance(value, list):
			return None
		return [query for query in value if isinstance(query, str)][: constants.MAX_INSIGHT_QUERIES]


class SuggestionPayload(BaseModel):
	model_config = ConfigDict(extra="ignore")

	action: str = "addDiagnostics"
	title: str = DEFAULT_SUGGESTION_TITLE
	reason: str = DEFAULT_SUGGESTION_REASON

	@field_validator("action", mode="before")
	@classmethod
	def _known_action(cls, value: Any) -> str:
		return value if isinstance(value, str) and value in constants.SUGGESTION_ACTIONS else "addDiagnostics"

	@field_validator("title", mode="before")
	@classmethod
	def _title_or_default(cls, value: Any) -> str:
		cleaned = value.strip() if isinstance(value, str) else ""
		return cleaned or DEFAULT_SUGGESTION_TITLE

	@field_validator("reason", mode="before")
	@classmethod
	def _reason_or_default(cls, value: Any) -> str:
		cleaned = value.strip() if isinstance(value, str) else ""
		return cleaned or DEFAULT_SUGGESTION_REASON


def _describe(exc: ValidationError) -> str:
	issues = exc.errors()
	if not issues:
		return "invalid item"
	first = issues[0]
	location = ".".join(str(part) for part in first.get("loc", ()))
	message = first.get("msg", "invalid value")
	return f"{location}: {message}" if location else message


def _validate_items(model: Type[_PayloadModel], items: Sequence[Any], limit: int) -> List[_PayloadModel]:
	validated: List[_PayloadModel] = []
	for position, item in enumerate(items[:limit], start=1):
		try:
			validated.append(model.model_validate(item))
		except ValidationError as exc:
			raise SchemaViolation(_describe(exc), position=position) from exc
	return validated


def parse_provocation_cards(
	payload: Mapping[str, Any],
	evidence_ids: Sequence[str],
	*,
	now: Optional[str] = None,
) -> List[ProvocationCard]:
	items = payload.get("cards")
	if not isinstance(items, list) or not items:
		raise SchemaViolation("No cards in model output.")
	created_at = now or _now_iso()
	return [
		ProvocationCard(
			id=_new_id("prov_ai", index),
			kind=card.kind,
			title=card.title,
			body=card.body,
			severity=card.severity,
			based_on_evidence_ids=list(evidence_ids),
			created_at=created_at,
		)
		for index, card in enumerate(
			_validate_items(CardPayload, items, constants.MAX_PROVOCATION_CARDS),
			start=1,
		)
	]


def parse_insights(
	payload: Mapping[str, Any],
	*,
	now: Optional[str] = None,
) -> Tuple[List[EvidenceInsight], List[EvidenceSuggestion]]:
	items = payload.get("insights")
	if not isinstance(items, list) or not items:
		raise SchemaViolation("No insights returned by model.")
	created_at = now or _now_iso()
	insights = [
		EvidenceInsight(
			id=_new_id("ins", index),
			kind=insight.kind,
			title=insight.title,
			body=insight.body,
			queries=insight.queries,
			created_at=created_at,
		)
		for index, insight in enumerate(
			_validate_items(InsightPayload, items, constants.MAX_INSIGHTS),
			start=1,
		)
	]

	raw_suggestions = payload.get("suggestedRawEvidence")
	if not isinstance(raw_suggestions, list):
		raw_suggestions = []
	suggestions = [
		EvidenceSuggestion(
			id=_new_id("sug", index),
			action=suggestion.action,
			title=suggestion.title,
			reason=suggestion.reason,
			created_at=created_at,
		)
		for index, suggestion in enumerate(
			_validate_items(
				SuggestionPayload,
				[item if isinstance(item, Mapping) else {} for item in raw_suggestions],
				constants.MAX_SUGGESTIONS,
			),
			start=1,
		)
	]
	return insights, suggestions


def _outline_lines(session: Session) -> List[str]:
	outline = session.outline
	return [
		f"definitionOfDone: {outline.definition_of_done or '(empty)'}",
		f"constraints: {outline.constraints or '(empty)'}",
		f"verificationPlan: {outline.verification_plan or '(empty)'}",
	]


def build_provocation_messages(session: Session) -> List[ChatMessage]:
	summary = "\n".join(
		f"{index}. [{item.type}] {item.title} :: {item.why_included}"
		for index, item in enumerate(session.evidence[: constants.PROVOCATION_SUMMARY_EVIDENCE], start=1)
	)
	context_text = "\n".join(
		[
			*_outline_lines(session),
			f"evidence:\n{summary}" if summary else "evidence: (none)",
		]
	)
	return [
		{"role": "system", "content": PROVOCATION_SYSTEM_PROMPT},
		{"role": "user", "content": f"Generate provocation cards from this session context:\n{context_text}"},
	]


def build_insight_messages(session: Session) -> List[ChatMessage]:
	lines = []
	for index, item in enumerate(session.evidence[: constants.INSIGHT_SUMMARY_EVIDENCE], start=1):
		snippet = f" | snippet: {item.snippet[:200]}" if item.snippet else ""
		lines.append(f"{index}. [{item.type}/{item.source}] {item.title} | {item.ref}{snippet}")
	summary = "\n".join(lines)
	context_text = "\n".join(
		[
			*_outline_lines(session),
			f"rawEvidenceCount: {len(session.evidence)}",
			f"rawEvidence:\n{summary}" if summary else "rawEvidence: (none)",
		]
	)
	return [
		{"role": "system", "content": INSIGHT_SYSTEM_PROMPT},
		{"role": "user", "content": f"Generate Evidence Insights from this session:\n{context_text}"},
	]


def template_provocations(session: Session, *, now: Optional[str] = None) -> List[ProvocationCard]:
	"""Five fixed challenge cards filled in from the outline, no model involved."""
	outline = session.outline
	evidence_ids = [item.id for item in session.evidence[: constants.TEMPLATE_EVIDENCE_REFS]]
	done = outline.definition_of_done.strip() or "the current plan"
	constraints = outline.constraints.strip() or "stated constraints"
	verification = outline.verification_plan.strip() or "the verification plan"
	first_evidence = session.evidence[0].title if session.evidence and session.evidence[0].title else "current evidence"
	created_at = now or _now_iso()

	templates = [
		(
			"Counterexample",
			"Counterexample for success criteria",
			f'What scenario would make "{done}" appear successful while still violating user intent?',
			"high",
		),
		(
			"Hidden Assumption",
			"Assumption audit",
			f'Which hidden assumption in "{constraints}" could break when input or scale changes?',
			"med",
		),
		(
			"Trade-off",
			"Trade-off checkpoint",
			"If we optimize for this approach, what do we deliberately give up, and is that acceptable now?",
			"med",
		),
		(
			"Test Gap",
			"Test gap against verification",
			f'Which failure path is not covered by "{verification}" and should be tested first?',
			"high",
		),
		(
			"Security",
			"Security and misuse check",
			f'Could user-controlled input, secrets, or permissions around "{first_evidence}" create an exploit path?',
			"high",
		),
	]
	return [
		ProvocationCard(
			id=_new_id("prov", index),
			kind=kind,
			title=title,
			body=body,
			severity=severity,
			based_on_evidence_ids=list(evidence_ids),
			created_at=created_at,
		)
		for index, (kind, title, body, severity) in enumerate(templates, start=1)
	]


def _target_session(store: SessionStore, session_id: Optional[str]) -> Session:
	if session_id:
		return store.get_session(session_id)
	active = store.get_active_session()
	if active is not None:
		return active
	return store.get_session(store.create_session("standard"))


def apply_template_provocations(store: SessionStore, session_id: Optional[str] = None) -> Session:
	session = _target_session(store, session_id)
	cards = template_provocations(session)
	logger.info("Applying %d template provocations to %s", len(cards), session.id)
	return store.set_provocations(cards, session.id)


async def _ask(
	client: OllamaClient,
	messages: List[ChatMessage],
	cancel: Optional[CancelToken],
	on_delta: Optional[DeltaCallback],
) -> str:
	if on_delta is None:
		return await client.chat_once(messages, cancel=cancel)
	result = await client.chat_stream(messages, on_delta, cancel=cancel)
	return result.text


async def generate_provocations(
	store: SessionStore,
	client: OllamaClient,
	*,
	session_id: Optional[str] = None,
	cancel: Optional[CancelToken] = None,
	on_delta: Optional[DeltaCallback] = None,
) -> Session:
	"""Ask the model for provocation cards and store them on the target session.

	Nothing is written unless the model output parses and validates in full. The
	cards land on the session that was targeted when generation started, even if
	the active session changes meanwhile.
	"""
	await client.ensure_ready(cancel)
	session = await run_in_threadpool(_target_session, store, session_id)
	evidence_ids = [item.id for item in session.evidence[: constants.PROVOCATION_EVIDENCE_REFS]]
	raw_text = await _ask(client, build_provocation_messages(session), cancel, on_delta)
	cards = parse_provocation_cards(extract_json_object(raw_text), evidence_ids)
	updated = await run_in_threadpool(store.set_provocations, cards, session.id)
	logger.info("Generated %d provocation cards for %s with %s", len(cards), session.id, client.model)
	return updated


async def generate_insights(
	store: SessionStore,
	client: OllamaClient,
	*,
	session_id: Optional[str] = None,
	cancel: Optional[CancelToken] = None,
	on_delta: Optional[DeltaCallback] = None,
) -> Session:
	await client.ensure_ready(cancel)
	session = await run_in_threadpool(_target_session, store, session_id)
	raw_text = await _ask(client, build_insight_messages(session), cancel, on_delta)
	insights, suggestions = parse_insights(extract_json_object(raw_text))
	updated = await run_in_threadpool(store.set_evidence_insights, insights, suggestions, session.id)
	logger.info(
		"Generated %d insights and %d evidence suggestions for %s",
		len(insights),
		len(suggestions),
		session.id,
	)
	return updated
