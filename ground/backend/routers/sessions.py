from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from ground.backend.dependencies import get_store
from ground.backend.response import success_response
from ground.backend.schemas import ApiEnvelope, SessionCreateRequest, SessionRenameRequest
from ground.backend.services import export_service
from ground.backend.state.session_store import SessionStore, updates_from_patch


router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=ApiEnvelope)
def list_sessions(request: Request, include_archived: bool = False, store: SessionStore = Depends(get_store)):
	active = store.get_active_session()
	return success_response(
		request=request,
		data={
			"sessions": [meta.as_dict() for meta in store.list_sessions(include_archived=include_archived)],
			"active_session_id": active.id if active else None,
		},
	)


@router.post("", response_model=ApiEnvelope)
def create_session(request: Request, payload: SessionCreateRequest, store: SessionStore = Depends(get_store)):
	session_id = store.create_session(mode=payload.mode, title=payload.title, context=payload.context)
	return success_response(request=request, session=store.get_session(session_id))


@router.delete("", response_model=ApiEnvelope)
def clear_sessions(request: Request, store: SessionStore = Depends(get_store)):
	store.clear()
	return success_response(request=request, data={"cleared": True})


@router.get("/active", response_model=ApiEnvelope)
def get_active_session(request: Request, store: SessionStore = Depends(get_store)):
	active = store.get_active_session()
	if active is None:
		return success_response(request=request, data={"session": None})
	return success_response(request=request, session=active)


@router.get("/state", response_model=ApiEnvelope)
def get_state(request: Request, store: SessionStore = Depends(get_store)):
	return success_response(request=request, data={"state": store.get_state_snapshot()})


@router.get("/{session_id}", response_model=ApiEnvelope)
def get_session(request: Request, session_id: str, store: SessionStore = Depends(get_store)):
	return success_response(request=request, session=store.get_session(session_id))


@router.patch("/{session_id}", response_model=ApiEnvelope)
def patch_session(
	request: Request,
	session_id: str,
	patch: Dict[str, Any] = Body(...),
	store: SessionStore = Depends(get_store),
):
	session = store.update_session(session_id, *updates_from_patch(patch))
	return success_response(request=request, session=session)


@router.post("/{session_id}/activate", response_model=ApiEnvelope)
def activate_session(request: Request, session_id: str, store: SessionStore = Depends(get_store)):
	store.set_active_session(session_id)
	return success_response(request=request, session=store.get_session(session_id))


@router.post("/{session_id}/rename", response_model=ApiEnvelope)
def rename_session(
	request: Request,
	session_id: str,
	payload: SessionRenameRequest,
	store: SessionStore = Depends(get_store),
):
	store.rename_session(session_id, payload.title)
	return success_response(request=request, session=store.get_session(session_id))


@router.post("/{session_id}/archive", response_model=ApiEnvelope)
def archive_session(request: Request, session_id: str, store: SessionStore = Depends(get_store)):
	store.archive_session(session_id)
	active = store.get_active_session()
	return success_response(
		request=request,
		data={"archived": session_id, "active_session_id": active.id if active else None},
	)


@router.delete("/{session_id}", response_model=ApiEnvelope)
def delete_session(request: Request, session_id: str, store: SessionStore = Depends(get_store)):
	store.delete_session(session_id)
	active = store.get_active_session()
	return success_response(
		request=request,
		data={"deleted": session_id, "active_session_id": active.id if active else None},
	)


@router.get("/{session_id}/export", response_model=ApiEnvelope)
def export_session(request: Request, session_id: str, store: SessionStore = Depends(get_store)):
	session = store.get_session(session_id)
	return success_response(
		request=request,
		data={"session_id": session_id, "markdown": export_service.export_markdown(session)},
	)
