from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ground.backend.state.types import SelectionRange


class ApiError(BaseModel):
	model_config = ConfigDict(extra="forbid")

	code: str
	message: str
	evidence: List[str] = Field(default_factory=list)


class ApiEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: bool
	generated_at: str
	request_id: Optional[str] = None
	data: Optional[Dict[str, Any]] = None
	error: Optional[ApiError] = None


SessionModeField = Literal["bugfix", "feature", "refactor", "standard", "learning", "fast"]


class SelectionModel(BaseModel):
	model_config = ConfigDict(extra="forbid")

	start_line: int = Field(..., ge=0)
	start_character: int = Field(default=0, ge=0)
	end_line: int = Field(..., ge=0)
	end_character: int = Field(default=0, ge=0)

	def to_range(self) -> SelectionRange:
		return SelectionRange(
			start_line=self.start_line,
			start_character=self.start_character,
			end_line=self.end_line,
			end_character=self.end_character,
		)


class SessionCreateRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	mode: SessionModeField = Field(default="standard")
	title: Optional[str] = Field(default=None, description="Defaults to the mode label and active file name.")
	context: Optional[Dict[str, Any]] = Field(
		default=None,
		description="Editor snapshot: workspaceFolder, activeFile, selection.",
	)


class SessionRenameRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	title: str


class EvidenceCreateRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	type: Literal["file", "symbol", "selection", "diagnostic", "testLog", "diff", "link"]
	title: str = Field(..., min_length=1)
	ref: str = Field(..., min_length=1)
	snippet: Optional[str] = None
	why_included: str = ""
	source: Literal["user", "auto", "ai"] = "user"
	session_id: Optional[str] = None


class ActiveFileEvidenceRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	path: str = Field(..., min_length=1)
	session_id: Optional[str] = None


class SelectionEvidenceRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	path: str = Field(..., min_length=1)
	selection: SelectionModel
	text: str = Field(..., min_length=1)
	session_id: Optional[str] = None


class DiagnosticModel(BaseModel):
	model_config = ConfigDict(extra="forbid")

	uri: str = Field(..., min_length=1)
	line: int = Field(..., ge=0, description="0-based line.")
	character: int = Field(default=0, ge=0, description="0-based column.")
	severity: Union[int, str] = Field(default=1, description="1-4 or error|warning|info|hint.")
	message: str
	source: Optional[str] = None


class DiagnosticsEvidenceRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	diagnostics: List[DiagnosticModel] = Field(default_factory=list)
	session_id: Optional[str] = None


class LogEvidenceRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	text: str
	session_id: Optional[str] = None


class EvidencePackRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	active_file: Optional[str] = None
	selection: Optional[SelectionModel] = None
	selection_text: str = ""
	diagnostics: List[DiagnosticModel] = Field(default_factory=list)
	session_id: Optional[str] = None


class EvidenceWhyRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

	why_included: str
	session_id: Optional[str] = None


class ProvocationsReplaceRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	cards: List[Dict[str, Any]] = Field(default_factory=list)
	session_id: Optional[str] = None


class ProvocationResponseRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	decision: str = Field(..., description="accept | hold | reject")
	rationale: str = ""
	session_id: Optional[str] = None


class GenerateRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	session_id: Optional[str] = None


class ChatMessageModel(BaseModel):
	model_config = ConfigDict(extra="forbid")

	role: Literal["system", "user", "assistant"]
	content: str


class AssistantStreamRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	messages: List[ChatMessageModel] = Field(..., min_length=1)
