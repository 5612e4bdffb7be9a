from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ground.backend.ai.cancellation import CancelToken
from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.dependencies import get_ollama
from ground.backend.errors import GroundError
from ground.backend.response import success_response
from ground.backend.schemas import ApiEnvelope, AssistantStreamRequest
from ground.backend.services import health_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assistant", tags=["assistant"])


def _encode_sse(event: str, data: dict) -> str:
	payload = json.dumps(data, ensure_ascii=False)
	return f"event: {event}\ndata: {payload}\n\n"


@router.get("/health", response_model=ApiEnvelope)
async def health(request: Request, ollama: OllamaClient = Depends(get_ollama)):
	data = await health_service.get_model_status(ollama)
	return success_response(request=request, data=data)


@router.post("/stream")
async def stream(request: Request, payload: AssistantStreamRequest, ollama: OllamaClient = Depends(get_ollama)):
	messages = [message.model_dump() for message in payload.messages]

	async def generate() -> AsyncIterator[str]:
		cancel = CancelToken()
		deltas: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

		def finished(task: "asyncio.Future") -> None:
			if not task.cancelled():
				task.exception()
			deltas.put_nowait(None)

		task = asyncio.ensure_future(ollama.chat_stream(messages, deltas.put_nowait, cancel=cancel))
		task.add_done_callback(finished)
		try:
			while True:
				delta = await deltas.get()
				if delta is None:
					break
				yield _encode_sse("delta", {"text": delta})
			result = task.result()
			yield _encode_sse("done", result.as_dict())
		except GroundError as exc:
			logger.warning("Assistant stream failed: %s (%s)", exc.message, exc.code)
			yield _encode_sse("error", {"code": exc.code, "message": exc.message})
		except Exception:
			logger.exception("Assistant stream failed")
			yield _encode_sse("error", {"code": "internal_error", "message": "Assistant stream failed."})
		finally:
			if not task.done():
				cancel.cancel("client disconnected")

	return StreamingResponse(
		generate(),
		media_type="text/event-stream",
		headers={
			"Cache-Control": "no-cache",
			"Connection": "keep-alive",
			"X-Accel-Buffering": "no",
		},
	)
