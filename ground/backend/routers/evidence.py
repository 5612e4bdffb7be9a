from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request

from ground.backend.dependencies import get_store
from ground.backend.errors import ValidationFailed
from ground.backend.response import success_response
from ground.backend.schemas import (
	ActiveFileEvidenceRequest,
	ApiEnvelope,
	DiagnosticModel,
	DiagnosticsEvidenceRequest,
	EvidenceCreateRequest,
	EvidencePackRequest,
	EvidenceWhyRequest,
	LogEvidenceRequest,
	SelectionEvidenceRequest,
)
from ground.backend.state.evidence import (
	Diagnostic,
	active_file_evidence,
	build_evidence_pack,
	diagnostics_to_evidence,
	make_evidence,
	pasted_log_evidence,
	selection_evidence,
	severity_rank,
)
from ground.backend.state.session_store import SessionStore
from ground.backend.state.types import EvidenceItem, Session


router = APIRouter(prefix="/api/evidence", tags=["evidence"])


def _diagnostics(models: List[DiagnosticModel]) -> List[Diagnostic]:
	return [
		Diagnostic(
			uri=model.uri,
			line=model.line,
			character=model.character,
			severity=severity_rank(model.severity),
			message=model.message,
			source=model.source,
		)
		for model in models
	]


def _current(store: SessionStore, session_id: Optional[str]) -> Optional[Session]:
	if session_id:
		return store.get_session(session_id)
	return store.get_active_session()


def _added(request: Request, session: Optional[Session], items: List[EvidenceItem]):
	data: Dict[str, Any] = {"added": [item.as_dict() for item in items]}
	if session is None:
		data["session"] = None
	return success_response(request=request, data=data, session=session)


@router.post("", response_model=ApiEnvelope)
def add_evidence(request: Request, payload: EvidenceCreateRequest, store: SessionStore = Depends(get_store)):
	item = make_evidence(
		type=payload.type,
		title=payload.title,
		ref=payload.ref,
		snippet=payload.snippet,
		why_included=payload.why_included,
		source=payload.source,
	)
	session = store.add_evidence(item, session_id=payload.session_id)
	return _added(request, session, [item])


@router.post("/active-file", response_model=ApiEnvelope)
def add_active_file(
	request: Request,
	payload: ActiveFileEvidenceRequest,
	store: SessionStore = Depends(get_store),
):
	item = active_file_evidence(payload.path)
	session = store.add_evidence(item, session_id=payload.session_id)
	return _added(request, session, [item])


@router.post("/selection", response_model=ApiEnvelope)
def add_selection(
	request: Request,
	payload: SelectionEvidenceRequest,
	store: SessionStore = Depends(get_store),
):
	item = selection_evidence(payload.path, payload.selection.to_range(), payload.text)
	session = store.add_evidence(item, session_id=payload.session_id)
	return _added(request, session, [item])


@router.post("/diagnostics", response_model=ApiEnvelope)
def add_diagnostics(
	request: Request,
	payload: DiagnosticsEvidenceRequest,
	store: SessionStore = Depends(get_store),
):
	items = diagnostics_to_evidence(_diagnostics(payload.diagnostics))
	if not items:
		return _added(request, _current(store, payload.session_id), [])
	session = store.add_evidence(items, session_id=payload.session_id)
	return _added(request, session, items)


@router.post("/test-log", response_model=ApiEnvelope)
def ingest_test_log(request: Request, payload: LogEvidenceRequest, store: SessionStore = Depends(get_store)):
	item = pasted_log_evidence(payload.text)
	if item is None:
		raise ValidationFailed("Test log is empty.")
	session = store.add_evidence(item, session_id=payload.session_id)
	return _added(request, session, [item])


@router.post("/pack", response_model=ApiEnvelope)
def build_pack(request: Request, payload: EvidencePackRequest, store: SessionStore = Depends(get_store)):
	current = _current(store, payload.session_id)
	items = build_evidence_pack(
		current.evidence if current else [],
		active_file=payload.active_file,
		selection=payload.selection.to_range() if payload.selection else None,
		selection_text=payload.selection_text,
		diagnostics=_diagnostics(payload.diagnostics),
	)
	if not items:
		return _added(request, current, [])
	session = store.add_evidence(items, session_id=current.id if current else None)
	return _added(request, session, items)


@router.patch("/{evidence_id}", response_model=ApiEnvelope)
def update_why(
	request: Request,
	evidence_id: str,
	payload: EvidenceWhyRequest,
	store: SessionStore = Depends(get_store),
):
	session = store.update_evidence_why(evidence_id, payload.why_included, session_id=payload.session_id)
	return success_response(request=request, session=session)


@router.delete("/{evidence_id}", response_model=ApiEnvelope)
def remove_evidence(
	request: Request,
	evidence_id: str,
	session_id: Optional[str] = None,
	store: SessionStore = Depends(get_store),
):
	session = store.remove_evidence(evidence_id, session_id=session_id)
	return success_response(request=request, session=session)
