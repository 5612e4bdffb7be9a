from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Mapping, Optional, Union


Mode = Literal["bugfix", "feature", "refactor", "standard", "learning", "fast"]
EvidenceType = Literal["file", "symbol", "selection", "diagnostic", "testLog", "diff", "link"]
EvidenceSource = Literal["user", "auto", "ai"]
ProvocationKind = Literal[
	"Counterexample",
	"Hidden Assumption",
	"Trade-off",
	"Security",
	"Performance",
	"Test Gap",
]
Severity = Literal["low", "med", "high"]
Decision = Literal["accept", "hold", "reject"]
InsightKind = Literal["Implementation", "Risk", "Test", "Performance", "Security", "Search"]
SuggestionAction = Literal["addActiveFile", "addSelection", "addDiagnostics", "ingestTestLog"]


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
	return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class SelectionRange:
	start_line: int
	start_character: int
	end_line: int
	end_character: int

	def as_dict(self) -> Dict[str, int]:
		return {
			"startLine": self.start_line,
			"startCharacter": self.start_character,
			"endLine": self.end_line,
			"endCharacter": self.end_character,
		}


@dataclass(frozen=True)
class SessionContext:
	workspace_folder: Optional[str] = None
	active_file: Optional[str] = None
	selection: Optional[SelectionRange] = None

	def as_dict(self) -> Dict[str, Any]:
		return _drop_none(
			{
				"workspaceFolder": self.workspace_folder,
				"activeFile": self.active_file,
				"selection": self.selection.as_dict() if self.selection else None,
			}
		)


@dataclass(frozen=True)
class Outline:
	definition_of_done: str = ""
	constraints: str = ""
	verification_plan: str = ""
	symptom: str = ""
	repro_steps: str = ""
	strategy: str = ""

	def as_dict(self) -> Dict[str, str]:
		return {
			"symptom": self.symptom,
			"reproSteps": self.repro_steps,
			"definitionOfDone": self.definition_of_done,
			"constraints": self.constraints,
			"strategy": self.strategy,
			"verificationPlan": self.verification_plan,
		}


OUTLINE_ATTRS = {
	"symptom": "symptom",
	"reproSteps": "repro_steps",
	"definitionOfDone": "definition_of_done",
	"constraints": "constraints",
	"strategy": "strategy",
	"verificationPlan": "verification_plan",
}

CONTEXT_ATTRS = {
	"workspaceFolder": "workspace_folder",
	"activeFile": "active_file",
	"selection": "selection",
}


@dataclass(frozen=True)
class EvidenceItem:
	id: str
	type: EvidenceType
	title: str
	ref: str
	why_included: str
	created_at: str
	snippet: Optional[str] = None
	source: EvidenceSource = "user"

	def as_dict(self) -> Dict[str, Any]:
		return _drop_none(
			{
				"id": self.id,
				"type": self.type,
				"title": self.title,
				"ref": self.ref,
				"snippet": self.snippet,
				"whyIncluded": self.why_included,
				"createdAt": self.created_at,
				"source": self.source,
			}
		)


@dataclass(frozen=True)
class ProvocationCard:
	id: str
	kind: ProvocationKind
	title: str
	body: str
	created_at: str
	severity: Optional[Severity] = None
	based_on_evidence_ids: Optional[List[str]] = None

	def as_dict(self) -> Dict[str, Any]:
		return _drop_none(
			{
				"id": self.id,
				"kind": self.kind,
				"title": self.title,
				"body": self.body,
				"severity": self.severity,
				"basedOnEvidenceIds": list(self.based_on_evidence_ids)
				if self.based_on_evidence_ids is not None
				else None,
				"createdAt": self.created_at,
			}
		)


@dataclass(frozen=True)
class ProvocationResponse:
	decision: Decision
	rationale: str
	responded_at: str

	def as_dict(self) -> Dict[str, str]:
		return {
			"decision": self.decision,
			"rationale": self.rationale,
			"respondedAt": self.responded_at,
		}


@dataclass(frozen=True)
class EvidenceInsight:
	id: str
	kind: InsightKind
	title: str
	body: str
	created_at: str
	queries: Optional[List[str]] = None

	def as_dict(self) -> Dict[str, Any]:
		return _drop_none(
			{
				"id": self.id,
				"kind": self.kind,
				"title": self.title,
				"body": self.body,
				"queries": list(self.queries) if self.queries is not None else None,
				"createdAt": self.created_at,
			}
		)


@dataclass(frozen=True)
class EvidenceSuggestion:
	id: str
	action: SuggestionAction
	title: str
	reason: str
	created_at: str

	def as_dict(self) -> Dict[str, str]:
		return {
			"id": self.id,
			"action": self.action,
			"title": self.title,
			"reason": self.reason,
			"createdAt": self.created_at,
		}


@dataclass(frozen=True)
class GateStatus:
	outline_ready: bool = False
	provocation_ready: bool = False
	provocation_responded_count: int = 0
	provocation_total_count: int = 0
	can_generate_patch: bool = False
	can_export: bool = False

	def as_dict(self) -> Dict[str, Any]:
		return {
			"outlineReady": self.outline_ready,
			"provocationReady": self.provocation_ready,
			"provocationRespondedCount": self.provocation_responded_count,
			"provocationTotalCount": self.provocation_total_count,
			"canGeneratePatch": self.can_generate_patch,
			"canExport": self.can_export,
		}


@dataclass
class Session:
	id: str
	title: str
	mode: Mode
	created_at: str
	updated_at: str
	context: SessionContext = field(default_factory=SessionContext)
	outline: Outline = field(default_factory=Outline)
	evidence: List[EvidenceItem] = field(default_factory=list)
	provocations: List[ProvocationCard] = field(default_factory=list)
	provocation_responses: Dict[str, ProvocationResponse] = field(default_factory=dict)
	evidence_insights: List[EvidenceInsight] = field(default_factory=list)
	evidence_suggestions: List[EvidenceSuggestion] = field(default_factory=list)
	gate: GateStatus = field(default_factory=GateStatus)
	archived: bool = False

	def copy(self) -> "Session":
		# Children are frozen; copying the containers is enough to isolate edits.
		return replace(
			self,
			evidence=list(self.evidence),
			provocations=list(self.provocations),
			provocation_responses=dict(self.provocation_responses),
			evidence_insights=list(self.evidence_insights),
			evidence_suggestions=list(self.evidence_suggestions),
		)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"title": self.title,
			"mode": self.mode,
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
			"archived": self.archived,
			"context": self.context.as_dict(),
			"outline": self.outline.as_dict(),
			"evidence": [item.as_dict() for item in self.evidence],
			"provocations": [card.as_dict() for card in self.provocations],
			"provocationResponses": {
				card_id: response.as_dict() for card_id, response in self.provocation_responses.items()
			},
			"evidenceInsights": [insight.as_dict() for insight in self.evidence_insights],
			"evidenceSuggestions": [suggestion.as_dict() for suggestion in self.evidence_suggestions],
			"gate": self.gate.as_dict(),
		}


@dataclass(frozen=True)
class SessionMeta:
	id: str
	title: str
	mode: Mode
	created_at: str
	updated_at: str
	archived: bool
	evidence_count: int
	provocation_total: int
	provocation_responded: int
	outline_ready: bool
	provocation_ready: bool

	def as_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"title": self.title,
			"mode": self.mode,
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
			"archived": self.archived,
			"evidenceCount": self.evidence_count,
			"provocationTotal": self.provocation_total,
			"provocationResponded": self.provocation_responded,
			"outlineReady": self.outline_ready,
			"provocationReady": self.provocation_ready,
		}


@dataclass
class RepositoryState:
	active_session_id: Optional[str] = None
	sessions_by_id: Dict[str, Session] = field(default_factory=dict)
	session_order: List[str] = field(default_factory=list)

	def copy(self) -> "RepositoryState":
		return RepositoryState(
			active_session_id=self.active_session_id,
			sessions_by_id=dict(self.sessions_by_id),
			session_order=list(self.session_order),
		)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"activeSessionId": self.active_session_id,
			"sessionsById": {
				session_id: session.as_dict() for session_id, session in self.sessions_by_id.items()
			},
			"sessionOrder": list(self.session_order),
		}


# Tagged updates accepted by SessionStore.update_session. Nested groups merge one
# level deep; list-valued groups replace the stored list.


@dataclass(frozen=True)
class SetTitle:
	title: str


@dataclass(frozen=True)
class SetMode:
	mode: str


@dataclass(frozen=True)
class MergeOutline:
	fields: Mapping[str, str]


@dataclass(frozen=True)
class MergeContext:
	fields: Mapping[str, Any]


@dataclass(frozen=True)
class MergeResponses:
	responses: Mapping[str, ProvocationResponse]


@dataclass(frozen=True)
class AppendEvidence:
	items: List[EvidenceItem]


@dataclass(frozen=True)
class ReplaceEvidence:
	items: List[EvidenceItem]


@dataclass(frozen=True)
class ReplaceProvocations:
	cards: List[ProvocationCard]


@dataclass(frozen=True)
class ReplaceInsights:
	insights: List[EvidenceInsight]
	suggestions: List[EvidenceSuggestion]


SessionUpdate = Union[
	SetTitle,
	SetMode,
	MergeOutline,
	MergeContext,
	MergeResponses,
	AppendEvidence,
	ReplaceEvidence,
	ReplaceProvocations,
	ReplaceInsights,
]
