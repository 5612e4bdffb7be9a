from __future__ import annotations

from fastapi import Request

from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.state.session_store import SessionStore


def get_store(request: Request) -> SessionStore:
	return request.app.state.store


def get_ollama(request: Request) -> OllamaClient:
	return request.app.state.ollama
