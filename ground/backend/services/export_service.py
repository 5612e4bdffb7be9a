from __future__ import annotations

from typing import List

from ground.backend import constants
from ground.backend.errors import GateLocked
from ground.backend.state.types import Session


_OUTLINE_HEADINGS = (
	("symptom", "Symptom"),
	("repro_steps", "Repro steps"),
	("definition_of_done", "Definition of done"),
	("constraints", "Constraints"),
	("strategy", "Strategy"),
	("verification_plan", "Verification plan"),
)


def _outline_section(session: Session) -> List[str]:
	lines = ["## Outline", ""]
	for attr, heading in _OUTLINE_HEADINGS:
		value = getattr(session.outline, attr).strip()
		if value:
			lines.extend([f"### {heading}", "", value, ""])
	return lines


def _evidence_section(session: Session) -> List[str]:
	lines = ["## Evidence", ""]
	if not session.evidence:
		return [*lines, "_No evidence recorded._", ""]
	for item in session.evidence:
		lines.append(f"- **[{item.type}] {item.title}** (`{item.ref}`): {item.why_included}")
	lines.append("")
	return lines


def _provocation_section(session: Session) -> List[str]:
	lines = ["## Provocations", ""]
	for card in session.provocations:
		response = session.provocation_responses.get(card.id)
		severity = f", {card.severity}" if card.severity else ""
		lines.append(f"### {card.title} ({card.kind}{severity})")
		lines.extend(["", card.body, ""])
		if response is not None:
			lines.extend([f"- Decision: **{response.decision}**", f"- Rationale: {response.rationale}", ""])
	return lines


def export_markdown(session: Session) -> str:
	"""Render a session as Markdown. Refused until the gate allows export."""
	if not session.gate.can_export:
		raise GateLocked(
			f"Session {session.id} is not ready for export: "
			f"outline_ready={session.gate.outline_ready}, "
			f"provocations={session.gate.provocation_responded_count}/{session.gate.provocation_total_count}."
		)
	lines = [
		f"# {session.title}",
		"",
		f"- Mode: {constants.MODE_LABELS.get(session.mode, session.mode)}",
		f"- Created: {session.created_at}",
		f"- Updated: {session.updated_at}",
	]
	if session.context.active_file:
		lines.append(f"- Active file: `{session.context.active_file}`")
	lines.append("")
	lines.extend(_outline_section(session))
	lines.extend(_evidence_section(session))
	lines.extend(_provocation_section(session))
	return "\n".join(lines).rstrip() + "\n"
