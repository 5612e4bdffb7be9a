from __future__ import annotations

import sqlite3
from itertools import count
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import patch

from ground.backend import constants
from ground.backend.adapters.sqlite_adapter import SlotStorage
from ground.backend.errors import (
	ArchivedSessionError,
	EmptyRationale,
	NotFound,
	UnknownCard,
	ValidationFailed,
)
from ground.backend.state.evidence import make_evidence
from ground.backend.state.session_store import SessionStore, updates_from_patch
from ground.backend.state.types import MergeOutline, ProvocationCard, SessionContext, SetMode


def _clock():
	ticks = count(1)
	return lambda: f"2026-03-01T10:00:{next(ticks):02d}Z"


def _card(card_id: str) -> ProvocationCard:
	return ProvocationCard(
		id=card_id,
		kind="Hidden Assumption",
		title=f"Card {card_id}",
		body="What breaks at scale?",
		severity="med",
		created_at="2026-03-01T09:00:00Z",
	)


class SessionStoreTests(TestCase):
	def setUp(self) -> None:
		self._tmp = TemporaryDirectory()
		self.db_path = str(Path(self._tmp.name) / "state.db")
		self.store = self._open()

	def tearDown(self) -> None:
		self._tmp.cleanup()

	def _open(self) -> SessionStore:
		store = SessionStore.open(self.db_path, clock=_clock())
		store.load()
		return store

	def test_create_uses_context_for_default_title(self) -> None:
		session_id = self.store.create_session(
			"bugfix",
			context=SessionContext(workspace_folder="/repo", active_file="/repo/src/parser.py"),
		)
		session = self.store.get_session(session_id)
		self.assertEqual(session.title, "Bugfix: parser.py")
		self.assertEqual(session.mode, "bugfix")
		self.assertEqual(self.store.get_active_session().id, session_id)

		plain_id = self.store.create_session("learning")
		self.assertEqual(self.store.get_session(plain_id).title, "Learning session")

		titled_id = self.store.create_session("fast", title="  Spike  ")
		self.assertEqual(self.store.get_session(titled_id).title, "Spike")

	def test_unknown_mode_is_rejected(self) -> None:
		with self.assertRaises(ValidationFailed):
			self.store.create_session("yolo")

	def test_create_then_reload_round_trips(self) -> None:
		session_id = self.store.create_session("feature", title="Search box")
		self.store.update_session(session_id, MergeOutline({"definitionOfDone": "Results render", "constraints": "No new deps"}))
		self.store.add_evidence(
			make_evidence(type="file", title="Active file", ref="src/search.py", why_included="Entry point"),
		)
		before = self.store.get_session(session_id).as_dict()

		reopened = self._open()
		self.assertEqual(reopened.get_session(session_id).as_dict(), before)
		self.assertEqual(reopened.get_active_session().id, session_id)

	def test_load_is_idempotent(self) -> None:
		self.store.create_session("standard")
		self.store.create_session("refactor")
		first = self.store.get_state_snapshot()
		storage = SlotStorage(self.db_path)
		stored = storage.read(constants.STATE_SLOT_KEY)

		self.store.load()
		self.store.load()
		self.assertEqual(self.store.get_state_snapshot(), first)
		self.assertEqual(storage.read(constants.STATE_SLOT_KEY), stored)

	def test_archiving_most_recent_falls_back_to_next(self) -> None:
		first = self.store.create_session("standard", title="A")
		second = self.store.create_session("standard", title="B")
		third = self.store.create_session("standard", title="C")
		self.assertEqual([meta.id for meta in self.store.list_sessions()], [third, second, first])

		self.store.archive_session(third)
		self.assertEqual(self.store.get_active_session().id, second)
		self.assertEqual([meta.id for meta in self.store.list_sessions()], [second, first])
		self.assertEqual(len(self.store.list_sessions(include_archived=True)), 3)
		with self.assertRaises(ArchivedSessionError):
			self.store.set_active_session(third)

	def test_activation_moves_session_to_front(self) -> None:
		first = self.store.create_session("standard")
		second = self.store.create_session("standard")
		before = self.store.get_session(first).updated_at
		self.store.set_active_session(first)
		self.assertEqual([meta.id for meta in self.store.list_sessions()], [first, second])
		self.assertNotEqual(self.store.get_session(first).updated_at, before)
		with self.assertRaises(NotFound):
			self.store.set_active_session("sess_missing")

	def test_delete_active_falls_back_or_clears(self) -> None:
		first = self.store.create_session("standard")
		second = self.store.create_session("standard")
		self.store.delete_session(second)
		self.assertEqual(self.store.get_active_session().id, first)
		self.store.delete_session(first)
		self.assertIsNone(self.store.get_active_session())
		self.assertEqual(self.store.list_sessions(include_archived=True), [])

	def test_rename_ignores_blank_titles(self) -> None:
		session_id = self.store.create_session("standard", title="Original")
		self.store.rename_session(session_id, "   ")
		self.assertEqual(self.store.get_session(session_id).title, "Original")
		self.store.rename_session(session_id, " Renamed ")
		self.assertEqual(self.store.get_session(session_id).title, "Renamed")
		with self.assertRaises(NotFound):
			self.store.rename_session("sess_missing", "x")

	def test_replacing_cards_prunes_stale_responses(self) -> None:
		self.store.create_session("standard")
		self.store.set_provocations([_card("A"), _card("B")])
		self.store.upsert_provocation_response("A", "accept", "Handled by retry")
		self.store.upsert_provocation_response("B", "reject", "Out of scope")

		session = self.store.set_provocations([_card("B"), _card("C")])
		self.assertEqual(set(session.provocation_responses), {"B"})
		self.assertEqual(session.gate.provocation_responded_count, 1)
		self.assertEqual(session.gate.provocation_total_count, 2)

	def test_patch_answers_cards_it_introduces_in_any_key_order(self) -> None:
		card = {"id": "A", "kind": "Test Gap", "title": "Retry", "body": "Covered?", "createdAt": "2026-03-01T09:00:00Z"}
		responses = {"A": {"decision": "accept", "rationale": "Added a test"}}
		for patch_body in (
			{"provocations": [card], "provocationResponses": responses},
			{"provocationResponses": responses, "provocations": [card]},
		):
			session_id = self.store.create_session("standard")
			session = self.store.update_session(session_id, *updates_from_patch(patch_body))
			self.assertEqual([item.id for item in session.provocations], ["A"])
			self.assertEqual(session.provocation_responses["A"].rationale, "Added a test")
			self.assertEqual(session.gate.provocation_responded_count, 1)

	def test_upsert_validates_card_decision_and_rationale(self) -> None:
		self.store.create_session("standard")
		self.store.set_provocations([_card("A")])
		with self.assertRaises(UnknownCard):
			self.store.upsert_provocation_response("Z", "accept", "reason")
		with self.assertRaises(ValidationFailed):
			self.store.upsert_provocation_response("A", "maybe", "reason")
		with self.assertRaises(EmptyRationale):
			self.store.upsert_provocation_response("A", "hold", "   ")

		session = self.store.upsert_provocation_response("A", "hold", "  waiting on infra  ")
		self.assertEqual(session.provocation_responses["A"].rationale, "waiting on infra")
		self.assertTrue(session.gate.provocation_ready)

	def test_full_walkthrough_unlocks_export(self) -> None:
		self.store.create_session("standard")
		self.store.update_active_session(
			MergeOutline(
				{
					"definitionOfDone": "Crash no longer reproduces",
					"constraints": "Keep public API",
					"verificationPlan": "Run the regression suite",
				}
			)
		)
		self.store.set_provocations([_card("A")])
		session = self.store.upsert_provocation_response("A", "accept", "Added a guard")
		self.assertTrue(session.gate.can_export)
		self.assertFalse(session.gate.can_generate_patch)

		session = self.store.update_active_session(SetMode("fast"), MergeOutline({"constraints": ""}))
		self.assertTrue(session.gate.outline_ready)

	def test_first_mutation_creates_standard_session(self) -> None:
		self.assertIsNone(self.store.get_active_session())
		session = self.store.update_active_session(MergeOutline({"symptom": "Timeouts under load"}))
		self.assertEqual(session.mode, "standard")
		self.assertEqual(session.outline.symptom, "Timeouts under load")
		self.assertEqual(self.store.get_active_session().id, session.id)

	def test_response_without_session_is_not_found(self) -> None:
		with self.assertRaises(NotFound):
			self.store.upsert_provocation_response("A", "accept", "reason")

	def test_evidence_edits_require_known_ids(self) -> None:
		self.store.create_session("standard")
		item = make_evidence(type="link", title="Issue", ref="https://example.invalid/1", why_included="Report")
		self.store.add_evidence(item)

		session = self.store.update_evidence_why(item.id, "Original bug report")
		self.assertEqual(session.evidence[0].why_included, "Original bug report")
		with self.assertRaises(NotFound):
			self.store.remove_evidence("ev_missing")
		with self.assertRaises(NotFound):
			self.store.update_evidence_why("ev_missing", "x")

		session = self.store.remove_evidence(item.id)
		self.assertEqual(session.evidence, [])

	def test_failed_write_leaves_state_untouched(self) -> None:
		session_id = self.store.create_session("standard", title="Stable")
		before = self.store.get_state_snapshot()
		with patch.object(SlotStorage, "put", side_effect=sqlite3.OperationalError("disk I/O error")):
			with self.assertRaises(sqlite3.OperationalError):
				self.store.rename_session(session_id, "Changed")
		self.assertEqual(self.store.get_state_snapshot(), before)

	def test_snapshots_are_isolated_from_store(self) -> None:
		session_id = self.store.create_session("standard")
		session = self.store.get_session(session_id)
		session.title = "Mutated outside"
		session.evidence.append(
			make_evidence(type="link", title="Stray", ref="x", why_included="y"),
		)
		fresh = self.store.get_session(session_id)
		self.assertEqual(fresh.title, "Standard session")
		self.assertEqual(fresh.evidence, [])

	def test_listeners_fire_on_their_channels(self) -> None:
		active_events = []
		list_events = []

		def broken(_session) -> None:
			raise RuntimeError("listener bug")

		self.store.on_active_session_changed(broken)
		unsubscribe = self.store.on_active_session_changed(active_events.append)
		self.store.on_session_list_changed(list_events.append)

		session_id = self.store.create_session("standard")
		self.assertEqual(active_events[-1].id, session_id)
		self.assertEqual([meta.id for meta in list_events[-1]], [session_id])

		list_count = len(list_events)
		self.store.update_active_session(MergeOutline({"symptom": "flaky"}))
		self.assertEqual(active_events[-1].outline.symptom, "flaky")
		self.assertEqual(len(list_events), list_count)

		unsubscribe()
		active_count = len(active_events)
		self.store.rename_session(session_id, "Renamed")
		self.assertEqual(len(active_events), active_count)
		self.assertEqual(list_events[-1][0].title, "Renamed")

	def test_clear_drops_everything(self) -> None:
		self.store.create_session("standard")
		self.store.create_session("standard")
		self.store.clear()
		self.assertEqual(self.store.list_sessions(include_archived=True), [])
		self.assertIsNone(self._open().get_active_session())


class PatchTranslationTests(TestCase):
	def test_read_only_and_unknown_fields_are_rejected(self) -> None:
		for field in ("id", "createdAt", "updatedAt", "gate", "archived", "colour"):
			with self.assertRaises(ValidationFailed):
				updates_from_patch({field: "x"})

	def test_nested_groups_translate_to_merges(self) -> None:
		updates = updates_from_patch(
			{
				"title": "New",
				"outline": {"strategy": "bisect"},
				"provocationResponses": {"A": {"decision": "accept", "rationale": "ok"}},
			}
		)
		self.assertEqual([type(update).__name__ for update in updates], ["SetTitle", "MergeOutline", "MergeResponses"])
		self.assertEqual(updates[2].responses["A"].decision, "accept")
		self.assertTrue(updates[2].responses["A"].responded_at)

	def test_lists_are_replaced_before_merges(self) -> None:
		updates = updates_from_patch(
			{
				"provocationResponses": {"A": {"decision": "hold", "rationale": "later"}},
				"outline": {"constraints": "none"},
				"evidence": [],
				"provocations": [{"id": "A"}],
				"mode": "fast",
			}
		)
		self.assertEqual(
			[type(update).__name__ for update in updates],
			["SetMode", "ReplaceProvocations", "ReplaceEvidence", "MergeOutline", "MergeResponses"],
		)

	def test_malformed_evidence_entries_are_rejected(self) -> None:
		with self.assertRaises(ValidationFailed):
			updates_from_patch({"evidence": [{"type": "link", "title": "Issue", "ref": "#42"}, "stray"]})
