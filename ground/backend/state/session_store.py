from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ground.backend import constants
from ground.backend.adapters.sqlite_adapter import SlotStorage
from ground.backend.errors import (
	ArchivedSessionError,
	EmptyRationale,
	NotFound,
	UnknownCard,
	ValidationFailed,
)
from ground.backend.state.gate import compute_gate
from ground.backend.state.migrations import (
	default_title,
	parse_card,
	parse_context,
	parse_evidence_item,
	parse_response,
	parse_selection,
)
from ground.backend.state.repository import SessionRepository, move_to_front, next_eligible
from ground.backend.state.types import (
	AppendEvidence,
	CONTEXT_ATTRS,
	EvidenceInsight,
	EvidenceItem,
	EvidenceSuggestion,
	MergeContext,
	MergeOutline,
	MergeResponses,
	OUTLINE_ATTRS,
	ProvocationCard,
	ProvocationResponse,
	ReplaceEvidence,
	ReplaceInsights,
	ReplaceProvocations,
	RepositoryState,
	Session,
	SessionContext,
	SessionMeta,
	SessionUpdate,
	SetMode,
	SetTitle,
)


logger = logging.getLogger(__name__)

ContextProvider = Callable[[], SessionContext]
ActiveSessionListener = Callable[[Optional[Session]], None]
SessionListListener = Callable[[List[SessionMeta]], None]


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _new_session_id() -> str:
	return f"sess_{uuid.uuid4().hex}"


def _empty_context() -> SessionContext:
	return SessionContext()


def _validate_mode(mode: Any) -> str:
	if mode not in constants.SESSION_MODES:
		raise ValidationFailed(f"Unknown session mode: {mode!r}")
	return mode


def _session_meta(session: Session) -> SessionMeta:
	return SessionMeta(
		id=session.id,
		title=session.title,
		mode=session.mode,
		created_at=session.created_at,
		updated_at=session.updated_at,
		archived=session.archived,
		evidence_count=len(session.evidence),
		provocation_total=session.gate.provocation_total_count,
		provocation_responded=session.gate.provocation_responded_count,
		outline_ready=session.gate.outline_ready,
		provocation_ready=session.gate.provocation_ready,
	)


def _merge_outline(session: Session, fields: Mapping[str, Any]) -> None:
	values: Dict[str, str] = {}
	attr_names = set(OUTLINE_ATTRS.values())
	for key, value in fields.items():
		attr = OUTLINE_ATTRS.get(key, key if key in attr_names else None)
		if attr is None:
			raise ValidationFailed(f"Unknown outline field: {key}")
		if value is not None and not isinstance(value, str):
			raise ValidationFailed(f"Outline field {key} must be text.")
		values[attr] = value or ""
	session.outline = replace(session.outline, **values)


def _merge_context(session: Session, fields: Mapping[str, Any]) -> None:
	values: Dict[str, Any] = {}
	attr_names = set(CONTEXT_ATTRS.values())
	for key, value in fields.items():
		attr = CONTEXT_ATTRS.get(key, key if key in attr_names else None)
		if attr is None:
			raise ValidationFailed(f"Unknown context field: {key}")
		if attr == "selection":
			values[attr] = parse_selection(value)
		else:
			values[attr] = value if isinstance(value, str) else None
	session.context = replace(session.context, **values)


def _merge_responses(session: Session, responses: Mapping[str, ProvocationResponse]) -> None:
	card_ids = {card.id for card in session.provocations}
	for card_id, response in responses.items():
		if card_id not in card_ids:
			raise UnknownCard(card_id)
		if response.decision not in constants.DECISIONS:
			raise ValidationFailed(f"Unknown decision: {response.decision!r}")
		if not response.rationale.strip():
			raise EmptyRationale(card_id)
		session.provocation_responses[card_id] = replace(response, rationale=response.rationale.strip())


def _replace_evidence(session: Session, items: Sequence[EvidenceItem]) -> None:
	seen: set = set()
	for item in items:
		if item.id in seen:
			raise ValidationFailed(f"Duplicate evidence id: {item.id}")
		seen.add(item.id)
	session.evidence = list(items)


def _replace_provocations(session: Session, cards: Sequence[ProvocationCard]) -> None:
	card_ids = [card.id for card in cards]
	if len(set(card_ids)) != len(card_ids):
		raise ValidationFailed("Provocation card ids must be unique.")
	session.provocations = list(cards)
	kept = set(card_ids)
	session.provocation_responses = {
		card_id: response
		for card_id, response in session.provocation_responses.items()
		if card_id in kept
	}


def apply_updates(session: Session, updates: Iterable[SessionUpdate]) -> bool:
	"""Apply tagged updates to ``session`` in place; returns True if the title or mode changed."""
	listing_changed = False
	for update in updates:
		if isinstance(update, SetTitle):
			title = update.title.strip() if isinstance(update.title, str) else ""
			if title and title != session.title:
				session.title = title
				listing_changed = True
		elif isinstance(update, SetMode):
			mode = _validate_mode(update.mode)
			if mode != session.mode:
				session.mode = mode
				listing_changed = True
		elif isinstance(update, MergeOutline):
			_merge_outline(session, update.fields)
		elif isinstance(update, MergeContext):
			_merge_context(session, update.fields)
		elif isinstance(update, MergeResponses):
			_merge_responses(session, update.responses)
		elif isinstance(update, AppendEvidence):
			_replace_evidence(session, [*session.evidence, *update.items])
		elif isinstance(update, ReplaceEvidence):
			_replace_evidence(session, update.items)
		elif isinstance(update, ReplaceProvocations):
			_replace_provocations(session, update.cards)
		elif isinstance(update, ReplaceInsights):
			session.evidence_insights = list(update.insights)
			session.evidence_suggestions = list(update.suggestions)
		else:
			raise ValidationFailed(f"Unsupported session update: {type(update).__name__}")
	session.gate = compute_gate(session)
	return listing_changed


class SessionStore:
	"""Facade over the session repository.

	Every mutation runs under one lock: it copies the current state, applies the
	change, recomputes the gate, persists, and only then swaps the in-memory state.
	Rejected mutations raise before anything is written. Listeners are called after
	the lock is released.
	"""

	def __init__(
		self,
		repository: SessionRepository,
		*,
		context_provider: Optional[ContextProvider] = None,
		clock: Optional[Callable[[], str]] = None,
		id_factory: Optional[Callable[[], str]] = None,
	):
		self._repo = repository
		self._context_provider = context_provider or _empty_context
		self._clock = clock or _now_iso
		self._id_factory = id_factory or _new_session_id
		self._lock = RLock()
		self._loaded = False
		self._listeners_lock = Lock()
		self._active_listeners: List[ActiveSessionListener] = []
		self._list_listeners: List[SessionListListener] = []

	@classmethod
	def open(cls, db_path: Optional[str] = None, **kwargs: Any) -> "SessionStore":
		return cls(SessionRepository(SlotStorage(db_path)), **kwargs)

	# -- notifications -------------------------------------------------

	def on_active_session_changed(self, listener: ActiveSessionListener) -> Callable[[], None]:
		with self._listeners_lock:
			self._active_listeners.append(listener)

		def unsubscribe() -> None:
			with self._listeners_lock:
				if listener in self._active_listeners:
					self._active_listeners.remove(listener)

		return unsubscribe

	def on_session_list_changed(self, listener: SessionListListener) -> Callable[[], None]:
		with self._listeners_lock:
			self._list_listeners.append(listener)

		def unsubscribe() -> None:
			with self._listeners_lock:
				if listener in self._list_listeners:
					self._list_listeners.remove(listener)

		return unsubscribe

	def _emit(self, *, active: bool = True, listing: bool = False) -> None:
		with self._listeners_lock:
			active_listeners = list(self._active_listeners) if active else []
			list_listeners = list(self._list_listeners) if listing else []
		if not active_listeners and not list_listeners:
			return
		with self._lock:
			active_session = self._repo.active()
			active_payload = active_session.copy() if active_session else None
			list_payload = [_session_meta(session) for session in self._repo.ordered()]
		logger.debug(
			"Emitting session events active=%d list=%d",
			len(active_listeners),
			len(list_listeners),
		)
		for listener in active_listeners:
			try:
				listener(active_payload)
			except Exception:
				logger.exception("Active-session listener failed")
		for listener in list_listeners:
			try:
				listener(list(list_payload))
			except Exception:
				logger.exception("Session-list listener failed")

	# -- loading and reads ---------------------------------------------

	def load(self) -> Optional[Session]:
		with self._lock:
			self._repo.load()
			self._loaded = True
			active = self._repo.active()
			logger.info(
				"Loaded %d sessions (active=%s)",
				len(self._repo.state.sessions_by_id),
				active.id if active else None,
			)
			snapshot = active.copy() if active else None
		self._emit(active=True, listing=True)
		return snapshot

	def _ensure_loaded_locked(self) -> None:
		if not self._loaded:
			self._repo.load()
			self._loaded = True

	def get_session(self, session_id: str) -> Session:
		with self._lock:
			self._ensure_loaded_locked()
			return self._require_locked(session_id).copy()

	def get_active_session(self) -> Optional[Session]:
		with self._lock:
			self._ensure_loaded_locked()
			active = self._repo.active()
			return active.copy() if active else None

	def get_state_snapshot(self) -> Dict[str, Any]:
		with self._lock:
			self._ensure_loaded_locked()
			return self._repo.state.as_dict()

	def storage_meta(self) -> Dict[str, object]:
		with self._lock:
			return self._repo.storage.get_storage_meta()

	def list_sessions(self, include_archived: bool = False) -> List[SessionMeta]:
		with self._lock:
			self._ensure_loaded_locked()
			return [
				_session_meta(session)
				for session in self._repo.ordered()
				if include_archived or not session.archived
			]

	def _require_locked(self, session_id: str) -> Session:
		session = self._repo.get(session_id)
		if session is None:
			raise NotFound(f"Session not found: {session_id}")
		return session

	# -- session lifecycle ---------------------------------------------

	def _build_session(
		self,
		mode: str,
		title: Optional[str],
		context: Union[SessionContext, Mapping[str, Any], None],
	) -> Session:
		mode = _validate_mode(mode)
		if context is None:
			snapshot = self._context_provider()
		elif isinstance(context, SessionContext):
			snapshot = context
		else:
			snapshot = parse_context(context)
		now = self._clock()
		cleaned_title = title.strip() if isinstance(title, str) else ""
		session = Session(
			id=self._id_factory(),
			title=cleaned_title or default_title(mode, snapshot.active_file),
			mode=mode,
			created_at=now,
			updated_at=now,
			context=snapshot,
		)
		session.gate = compute_gate(session)
		return session

	def _insert_active(self, draft: RepositoryState, session: Session) -> None:
		if session.id in draft.sessions_by_id:
			raise ValidationFailed(f"Session id already in use: {session.id}")
		draft.sessions_by_id[session.id] = session
		draft.session_order = move_to_front(draft.session_order, session.id)
		draft.active_session_id = session.id

	def create_session(
		self,
		mode: str = "standard",
		title: Optional[str] = None,
		context: Union[SessionContext, Mapping[str, Any], None] = None,
	) -> str:
		with self._lock:
			self._ensure_loaded_locked()
			session = self._build_session(mode, title, context)
			draft = self._repo.state.copy()
			self._insert_active(draft, session)
			self._repo.commit(draft)
			logger.info("Created session %s (%s)", session.id, session.mode)
		self._emit(active=True, listing=True)
		return session.id

	def set_active_session(self, session_id: str) -> None:
		with self._lock:
			self._ensure_loaded_locked()
			current = self._require_locked(session_id)
			if current.archived:
				raise ArchivedSessionError(session_id)
			draft = self._repo.state.copy()
			session = current.copy()
			session.updated_at = self._clock()
			draft.sessions_by_id[session_id] = session
			draft.session_order = move_to_front(draft.session_order, session_id)
			draft.active_session_id = session_id
			self._repo.commit(draft)
		self._emit(active=True, listing=True)

	def rename_session(self, session_id: str, title: str) -> None:
		cleaned = title.strip() if isinstance(title, str) else ""
		with self._lock:
			self._ensure_loaded_locked()
			current = self._require_locked(session_id)
			if not cleaned:
				return
			draft = self._repo.state.copy()
			session = current.copy()
			session.title = cleaned
			session.updated_at = self._clock()
			draft.sessions_by_id[session_id] = session
			draft.session_order = move_to_front(draft.session_order, session_id)
			self._repo.commit(draft)
		self._emit(active=True, listing=True)

	def archive_session(self, session_id: str) -> None:
		with self._lock:
			self._ensure_loaded_locked()
			current = self._require_locked(session_id)
			draft = self._repo.state.copy()
			session = current.copy()
			session.archived = True
			session.updated_at = self._clock()
			draft.sessions_by_id[session_id] = session
			if draft.active_session_id == session_id:
				draft.active_session_id = next_eligible(draft, excluding=session_id)
			self._repo.commit(draft)
			logger.info("Archived session %s", session_id)
		self._emit(active=True, listing=True)

	def delete_session(self, session_id: str) -> None:
		with self._lock:
			self._ensure_loaded_locked()
			self._require_locked(session_id)
			draft = self._repo.state.copy()
			del draft.sessions_by_id[session_id]
			draft.session_order = [existing for existing in draft.session_order if existing != session_id]
			if draft.active_session_id == session_id:
				draft.active_session_id = next_eligible(draft, excluding=session_id)
			self._repo.commit(draft)
			logger.info("Deleted session %s", session_id)
		self._emit(active=True, listing=True)

	def clear(self) -> None:
		with self._lock:
			self._ensure_loaded_locked()
			self._repo.commit(RepositoryState())
			logger.info("Cleared all sessions")
		self._emit(active=True, listing=True)

	# -- content updates -----------------------------------------------

	def _update_locked(
		self,
		session_id: Optional[str],
		updates: Sequence[SessionUpdate],
		*,
		create_if_missing: bool,
	) -> Tuple[Session, bool]:
		draft = self._repo.state.copy()
		created = False
		if session_id is None:
			session_id = draft.active_session_id
			if session_id is None:
				if not create_if_missing:
					raise NotFound("No active session.")
				implicit = self._build_session("standard", None, None)
				self._insert_active(draft, implicit)
				session_id = implicit.id
				created = True
		current = draft.sessions_by_id.get(session_id)
		if current is None:
			raise NotFound(f"Session not found: {session_id}")

		session = current.copy()
		listing_changed = apply_updates(session, updates)
		session.updated_at = self._clock()
		draft.sessions_by_id[session_id] = session
		if draft.active_session_id == session_id:
			draft.session_order = move_to_front(draft.session_order, session_id)
		self._repo.commit(draft)
		if created:
			logger.info("Created implicit session %s", session_id)
		return session.copy(), created or listing_changed

	def _update(
		self,
		session_id: Optional[str],
		updates: Sequence[SessionUpdate],
		*,
		create_if_missing: bool = True,
	) -> Session:
		with self._lock:
			self._ensure_loaded_locked()
			session, listing = self._update_locked(session_id, updates, create_if_missing=create_if_missing)
		self._emit(active=True, listing=listing)
		return session

	def update_session(self, session_id: str, *updates: SessionUpdate) -> Session:
		return self._update(session_id, updates, create_if_missing=False)

	def update_active_session(self, *updates: SessionUpdate) -> Session:
		return self._update(None, updates)

	def set_provocations(
		self,
		cards: Sequence[ProvocationCard],
		session_id: Optional[str] = None,
	) -> Session:
		return self._update(session_id, [ReplaceProvocations(list(cards))])

	def upsert_provocation_response(
		self,
		card_id: str,
		decision: str,
		rationale: str,
		session_id: Optional[str] = None,
	) -> Session:
		response = ProvocationResponse(
			decision=decision,
			rationale=rationale if isinstance(rationale, str) else "",
			responded_at=self._clock(),
		)
		return self._update(
			session_id,
			[MergeResponses({card_id: response})],
			create_if_missing=False,
		)

	def add_evidence(
		self,
		items: Union[EvidenceItem, Sequence[EvidenceItem]],
		session_id: Optional[str] = None,
	) -> Session:
		new_items = [items] if isinstance(items, EvidenceItem) else list(items)
		return self._update(session_id, [AppendEvidence(new_items)])

	def remove_evidence(self, evidence_id: str, session_id: Optional[str] = None) -> Session:
		with self._lock:
			self._ensure_loaded_locked()
			target = self._evidence_owner_locked(evidence_id, session_id)
			remaining = [item for item in target.evidence if item.id != evidence_id]
			session, _ = self._update_locked(target.id, [ReplaceEvidence(remaining)], create_if_missing=False)
		self._emit(active=True)
		return session

	def update_evidence_why(
		self,
		evidence_id: str,
		why_included: str,
		session_id: Optional[str] = None,
	) -> Session:
		with self._lock:
			self._ensure_loaded_locked()
			target = self._evidence_owner_locked(evidence_id, session_id)
			edited = [
				replace(item, why_included=why_included) if item.id == evidence_id else item
				for item in target.evidence
			]
			session, _ = self._update_locked(target.id, [ReplaceEvidence(edited)], create_if_missing=False)
		self._emit(active=True)
		return session

	def _evidence_owner_locked(self, evidence_id: str, session_id: Optional[str]) -> Session:
		if session_id is None:
			target = self._repo.active()
			if target is None:
				raise NotFound("No active session.")
		else:
			target = self._require_locked(session_id)
		if not any(item.id == evidence_id for item in target.evidence):
			raise NotFound(f"Evidence not found: {evidence_id}")
		return target

	def set_evidence_insights(
		self,
		insights: Sequence[EvidenceInsight],
		suggestions: Sequence[EvidenceSuggestion],
		session_id: Optional[str] = None,
	) -> Session:
		return self._update(session_id, [ReplaceInsights(list(insights), list(suggestions))])


_READ_ONLY_FIELDS = {"id", "createdAt", "updatedAt", "gate", "archived"}

_PATCH_ORDER = (
	SetTitle,
	SetMode,
	ReplaceProvocations,
	ReplaceEvidence,
	MergeOutline,
	MergeContext,
	MergeResponses,
)


def updates_from_patch(patch: Mapping[str, Any]) -> List[SessionUpdate]:
	"""Translate a camelCase partial session into tagged updates.

	``outline``, ``context`` and ``provocationResponses`` merge one level deep;
	``evidence`` and ``provocations`` replace the stored lists. Derived and
	lifecycle fields are rejected.

	Updates come back in a fixed order: list replacements run before the merges,
	so responses are checked against the cards in the same patch.
	"""
	updates: List[SessionUpdate] = []
	for key, value in patch.items():
		if key in _READ_ONLY_FIELDS:
			raise ValidationFailed(f"Field {key} cannot be patched.")
		if key == "title":
			updates.append(SetTitle(value if isinstance(value, str) else ""))
		elif key == "mode":
			updates.append(SetMode(value))
		elif key == "outline":
			if not isinstance(value, Mapping):
				raise ValidationFailed("outline must be an object.")
			updates.append(MergeOutline(dict(value)))
		elif key == "context":
			if not isinstance(value, Mapping):
				raise ValidationFailed("context must be an object.")
			updates.append(MergeContext(dict(value)))
		elif key == "provocationResponses":
			if not isinstance(value, Mapping):
				raise ValidationFailed("provocationResponses must be an object.")
			responses: Dict[str, ProvocationResponse] = {}
			for card_id, raw in value.items():
				response = parse_response(raw)
				if response is None:
					raise ValidationFailed(f"Invalid response for card {card_id}.")
				if not isinstance(raw.get("respondedAt"), str):
					response = replace(response, responded_at=_now_iso())
				responses[card_id] = response
			updates.append(MergeResponses(responses))
		elif key == "evidence":
			if not isinstance(value, list):
				raise ValidationFailed("evidence must be a list.")
			items = [parse_evidence_item(raw, fallback_id=f"ev_{uuid.uuid4().hex}") for raw in value]
			if any(item is None for item in items):
				raise ValidationFailed("Every evidence item must be an object.")
			updates.append(ReplaceEvidence([item for item in items if item is not None]))
		elif key == "provocations":
			if not isinstance(value, list):
				raise ValidationFailed("provocations must be a list.")
			cards = [parse_card(raw) for raw in value]
			if any(card is None for card in cards):
				raise ValidationFailed("Every provocation card needs an id.")
			updates.append(ReplaceProvocations([card for card in cards if card is not None]))
		else:
			raise ValidationFailed(f"Unknown session field: {key}")
	updates.sort(key=lambda update: _PATCH_ORDER.index(type(update)))
	return updates
