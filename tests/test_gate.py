from __future__ import annotations

from itertools import product
from unittest import TestCase

from ground.backend.state.gate import compute_gate
from ground.backend.state.types import Outline, ProvocationCard, ProvocationResponse, Session


def _session(mode: str = "standard", outline: Outline = Outline(), cards: int = 0, answered: int = 0) -> Session:
	session = Session(
		id="sess_gate",
		title="Gate",
		mode=mode,
		created_at="2026-01-01T00:00:00Z",
		updated_at="2026-01-01T00:00:00Z",
		outline=outline,
	)
	session.provocations = [
		ProvocationCard(
			id=f"card_{index}",
			kind="Counterexample",
			title=f"Card {index}",
			body="Body",
			created_at="2026-01-01T00:00:00Z",
		)
		for index in range(cards)
	]
	for index in range(answered):
		session.provocation_responses[f"card_{index}"] = ProvocationResponse(
			decision="accept",
			rationale="Covered by the regression test.",
			responded_at="2026-01-01T00:00:00Z",
		)
	return session


_FULL_OUTLINE = Outline(definition_of_done="Tests pass", constraints="No API change", verification_plan="pytest -k gate")


class GateTests(TestCase):
	def test_empty_session_is_locked(self) -> None:
		gate = compute_gate(_session())
		self.assertFalse(gate.outline_ready)
		self.assertFalse(gate.provocation_ready)
		self.assertFalse(gate.can_export)
		self.assertFalse(gate.can_generate_patch)
		self.assertEqual(gate.provocation_total_count, 0)

	def test_blank_required_fields_do_not_count(self) -> None:
		outline = Outline(definition_of_done="  ", constraints="x", verification_plan="y")
		self.assertFalse(compute_gate(_session(outline=outline)).outline_ready)

	def test_fast_mode_relaxes_constraints_only(self) -> None:
		outline = Outline(definition_of_done="done", verification_plan="verify")
		self.assertTrue(compute_gate(_session(mode="fast", outline=outline)).outline_ready)
		for mode in ("bugfix", "feature", "refactor", "standard", "learning"):
			self.assertFalse(compute_gate(_session(mode=mode, outline=outline)).outline_ready, mode)
		missing_plan = Outline(definition_of_done="done")
		self.assertFalse(compute_gate(_session(mode="fast", outline=missing_plan)).outline_ready)

	def test_provocations_need_every_card_answered(self) -> None:
		gate = compute_gate(_session(outline=_FULL_OUTLINE, cards=3, answered=2))
		self.assertEqual(gate.provocation_responded_count, 2)
		self.assertEqual(gate.provocation_total_count, 3)
		self.assertFalse(gate.provocation_ready)
		self.assertFalse(gate.can_export)

		gate = compute_gate(_session(outline=_FULL_OUTLINE, cards=3, answered=3))
		self.assertTrue(gate.provocation_ready)
		self.assertTrue(gate.can_export)
		self.assertFalse(gate.can_generate_patch)

	def test_blank_rationale_is_not_a_response(self) -> None:
		session = _session(outline=_FULL_OUTLINE, cards=1)
		session.provocation_responses["card_0"] = ProvocationResponse(
			decision="hold",
			rationale="   ",
			responded_at="2026-01-01T00:00:00Z",
		)
		gate = compute_gate(session)
		self.assertEqual(gate.provocation_responded_count, 0)
		self.assertFalse(gate.provocation_ready)

	def test_export_implies_both_readiness_flags(self) -> None:
		outlines = [Outline(), _FULL_OUTLINE, Outline(definition_of_done="d", verification_plan="v")]
		modes = ("standard", "fast")
		for outline, mode, cards, answered in product(outlines, modes, range(3), range(3)):
			if answered > cards:
				continue
			gate = compute_gate(_session(mode=mode, outline=outline, cards=cards, answered=answered))
			if gate.can_export:
				self.assertTrue(gate.outline_ready)
				self.assertTrue(gate.provocation_ready)
			if gate.provocation_ready:
				self.assertGreater(gate.provocation_total_count, 0)
			self.assertFalse(gate.can_generate_patch)
