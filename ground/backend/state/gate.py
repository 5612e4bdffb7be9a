from __future__ import annotations

from typing import Optional

from ground.backend import constants
from ground.backend.state.types import GateStatus, Session


def _has_text(value: Optional[str]) -> bool:
	return isinstance(value, str) and bool(value.strip())


def _has_valid_response(session: Session, card_id: str) -> bool:
	response = session.provocation_responses.get(card_id)
	if response is None:
		return False
	return response.decision in constants.DECISIONS and _has_text(response.rationale)


def compute_gate(session: Session) -> GateStatus:
	"""Derive readiness flags from a session's outline, mode and provocation answers.

	The "fast" mode drops the constraints requirement; every other mode needs all
	three required outline fields. A session without cards is never provocation-ready.
	Patch generation stays locked regardless of the other flags.
	"""
	outline = session.outline
	outline_ready = _has_text(outline.definition_of_done) and _has_text(outline.verification_plan)
	if session.mode != "fast":
		outline_ready = outline_ready and _has_text(outline.constraints)

	total = len(session.provocations)
	responded = sum(1 for card in session.provocations if _has_valid_response(session, card.id))
	provocation_ready = total > 0 and responded == total

	return GateStatus(
		outline_ready=outline_ready,
		provocation_ready=provocation_ready,
		provocation_responded_count=responded,
		provocation_total_count=total,
		can_generate_patch=False,
		can_export=outline_ready and provocation_ready,
	)
