from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.dependencies import get_ollama, get_store
from ground.backend.response import success_response
from ground.backend.schemas import ApiEnvelope
from ground.backend.services import health_service
from ground.backend.state.session_store import SessionStore


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("/summary", response_model=ApiEnvelope)
async def get_summary(
	request: Request,
	store: SessionStore = Depends(get_store),
	ollama: OllamaClient = Depends(get_ollama),
):
	data = await run_in_threadpool(health_service.get_summary, store)
	data["model"] = await health_service.get_model_status(ollama)
	return success_response(
		request=request,
		data=data,
	)
