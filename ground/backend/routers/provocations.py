from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.dependencies import get_ollama, get_store
from ground.backend.errors import GroundError, ValidationFailed, to_http_exception
from ground.backend.response import success_response
from ground.backend.schemas import (
	ApiEnvelope,
	GenerateRequest,
	ProvocationResponseRequest,
	ProvocationsReplaceRequest,
)
from ground.backend.services import generation_service
from ground.backend.state.migrations import parse_card
from ground.backend.state.session_store import SessionStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["provocations"])


@router.put("/provocations", response_model=ApiEnvelope)
def replace_provocations(
	request: Request,
	payload: ProvocationsReplaceRequest,
	store: SessionStore = Depends(get_store),
):
	cards = [parse_card(raw) for raw in payload.cards]
	if any(card is None for card in cards):
		raise ValidationFailed("Every provocation card needs an id.")
	session = store.set_provocations([card for card in cards if card is not None], session_id=payload.session_id)
	return success_response(request=request, session=session)


@router.post("/provocations/template", response_model=ApiEnvelope)
def template_provocations(request: Request, payload: GenerateRequest, store: SessionStore = Depends(get_store)):
	session = generation_service.apply_template_provocations(store, session_id=payload.session_id)
	return success_response(request=request, session=session)


@router.post("/provocations/{card_id}/response", response_model=ApiEnvelope)
def respond_to_provocation(
	request: Request,
	card_id: str,
	payload: ProvocationResponseRequest,
	store: SessionStore = Depends(get_store),
):
	session = store.upsert_provocation_response(
		card_id,
		payload.decision,
		payload.rationale,
		session_id=payload.session_id,
	)
	return success_response(request=request, session=session)


@router.post("/provocations/generate", response_model=ApiEnvelope)
async def generate_provocations(
	request: Request,
	payload: GenerateRequest,
	store: SessionStore = Depends(get_store),
	ollama: OllamaClient = Depends(get_ollama),
):
	try:
		session = await generation_service.generate_provocations(store, ollama, session_id=payload.session_id)
	except GroundError as exc:
		logger.warning("Provocation generation failed: %s (%s)", exc.message, exc.code)
		raise to_http_exception(exc) from exc
	return success_response(request=request, data={"model": ollama.model}, session=session)


@router.post("/insights/generate", response_model=ApiEnvelope)
async def generate_insights(
	request: Request,
	payload: GenerateRequest,
	store: SessionStore = Depends(get_store),
	ollama: OllamaClient = Depends(get_ollama),
):
	try:
		session = await generation_service.generate_insights(store, ollama, session_id=payload.session_id)
	except GroundError as exc:
		logger.warning("Insight generation failed: %s (%s)", exc.message, exc.code)
		raise to_http_exception(exc) from exc
	return success_response(request=request, data={"model": ollama.model}, session=session)
