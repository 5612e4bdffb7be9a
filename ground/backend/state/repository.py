from __future__ import annotations

import logging
from typing import List, Optional

from ground.backend import constants
from ground.backend.adapters.sqlite_adapter import SlotStorage
from ground.backend.state.migrations import normalize_state, serialize_state, wrap_legacy_session
from ground.backend.state.types import RepositoryState, Session


logger = logging.getLogger(__name__)


def move_to_front(order: List[str], session_id: str) -> List[str]:
	return [session_id, *[existing for existing in order if existing != session_id]]


def next_eligible(state: RepositoryState, excluding: Optional[str] = None) -> Optional[str]:
	for session_id in state.session_order:
		if session_id == excluding:
			continue
		session = state.sessions_by_id.get(session_id)
		if session is not None and not session.archived:
			return session_id
	return None


class SessionRepository:
	"""In-memory session table mirrored to one durable slot.

	``commit`` writes the serialized state first and only then swaps the in-memory
	copy, so the cache never runs ahead of what was persisted.
	"""

	def __init__(
		self,
		storage: SlotStorage,
		*,
		slot_key: str = constants.STATE_SLOT_KEY,
		legacy_slot_key: str = constants.LEGACY_SESSION_SLOT_KEY,
	):
		self.storage = storage
		self.slot_key = slot_key
		self.legacy_slot_key = legacy_slot_key
		self._state = RepositoryState()

	@property
	def state(self) -> RepositoryState:
		return self._state

	def load(self) -> RepositoryState:
		raw = self.storage.read(self.slot_key)
		if raw is not None:
			state = normalize_state(raw)
			serialized = serialize_state(state)
			if serialized != raw:
				logger.info("Rewriting normalized session state in slot %s", self.slot_key)
				self.storage.put(self.slot_key, serialized)
			self._state = state
			return state

		legacy_raw = self.storage.read(self.legacy_slot_key)
		migrated = wrap_legacy_session(legacy_raw) if legacy_raw is not None else None
		if migrated is not None:
			logger.info(
				"Migrating legacy session slot %s into %s",
				self.legacy_slot_key,
				self.slot_key,
			)
			self.storage.write(
				puts={self.slot_key: serialize_state(migrated)},
				deletes=(self.legacy_slot_key,),
			)
			self._state = migrated
			return migrated

		if legacy_raw is not None:
			logger.warning("Discarding unreadable legacy session slot %s", self.legacy_slot_key)
			self.storage.delete(self.legacy_slot_key)
		self._state = RepositoryState()
		return self._state

	def commit(self, next_state: RepositoryState) -> None:
		self.storage.put(self.slot_key, serialize_state(next_state))
		self._state = next_state

	def get(self, session_id: str) -> Optional[Session]:
		return self._state.sessions_by_id.get(session_id)

	def active(self) -> Optional[Session]:
		active_id = self._state.active_session_id
		if active_id is None:
			return None
		return self._state.sessions_by_id.get(active_id)

	def ordered(self) -> List[Session]:
		return [
			self._state.sessions_by_id[session_id]
			for session_id in self._state.session_order
			if session_id in self._state.sessions_by_id
		]
