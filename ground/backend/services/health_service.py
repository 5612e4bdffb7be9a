from __future__ import annotations

from typing import Dict, Optional

from ground.backend.ai.cancellation import CancelToken
from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.state.session_store import SessionStore


def get_summary(store: SessionStore) -> Dict[str, object]:
	sessions = store.list_sessions(include_archived=True)
	archived = sum(1 for meta in sessions if meta.archived)
	active = store.get_active_session()
	return {
		"sessions": {
			"total": len(sessions),
			"active": len(sessions) - archived,
			"archived": archived,
			"export_ready": sum(1 for meta in sessions if meta.outline_ready and meta.provocation_ready),
		},
		"active_session": {
			"id": active.id,
			"title": active.title,
			"gate": active.gate.as_dict(),
		}
		if active is not None
		else None,
		"storage": store.storage_meta(),
	}


async def get_model_status(client: OllamaClient, cancel: Optional[CancelToken] = None) -> Dict[str, object]:
	health = await client.health_check(cancel)
	return {
		"base_url": client.base_url,
		"model": client.model,
		"model_installed": health.ok and client.model in health.models,
		**health.as_dict(),
	}
