from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ground.backend import config, constants
from ground.backend.ai.cancellation import CancelScope, CancelToken
from ground.backend.errors import (
	GroundError,
	HttpError,
	MalformedModelOutput,
	ModelNotInstalled,
	RequestAborted,
	RequestTimeout,
	UnreachableEndpoint,
)


logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]
DeltaCallback = Callable[[str], None]


@dataclass
class HealthResult:
	ok: bool
	reason: Optional[str] = None
	models: List[str] = field(default_factory=list)

	def as_dict(self) -> Dict[str, Any]:
		payload: Dict[str, Any] = {"ok": self.ok, "models": list(self.models)}
		if self.reason:
			payload["reason"] = self.reason
		return payload


@dataclass
class StreamResult:
	text: str
	frames: int
	completed: bool

	def as_dict(self) -> Dict[str, Any]:
		return {"text": self.text, "frames": self.frames, "completed": self.completed}


def _decode_frame(line: bytes) -> Optional[Dict[str, Any]]:
	try:
		text = line.decode("utf-8").strip()
	except UnicodeDecodeError:
		logger.debug("Skipping undecodable stream line (%d bytes)", len(line))
		return None
	if not text:
		return None
	try:
		frame = json.loads(text)
	except json.JSONDecodeError:
		logger.debug("Skipping malformed stream line: %.120s", text)
		return None
	if not isinstance(frame, dict):
		logger.debug("Skipping non-object stream frame: %.120s", text)
		return None
	return frame


def _frame_content(frame: Dict[str, Any]) -> Optional[str]:
	message = frame.get("message")
	if not isinstance(message, dict):
		return None
	content = message.get("content")
	return content if isinstance(content, str) else None


def _response_text(response: httpx.Response) -> str:
	try:
		return response.text
	except (UnicodeDecodeError, httpx.ResponseNotRead):
		return ""


class OllamaClient:
	"""Async client for a local Ollama server.

	Every call opens its own ``httpx.AsyncClient`` and runs under a ``CancelScope``
	that combines the caller's token with this client's timeout.
	"""

	def __init__(
		self,
		base_url: str = constants.DEFAULT_OLLAMA_BASE_URL,
		model: str = constants.DEFAULT_OLLAMA_MODEL,
		timeout_s: float = constants.DEFAULT_OLLAMA_TIMEOUT_S,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	):
		self.base_url = base_url.rstrip("/")
		self.model = model
		self.timeout_s = timeout_s
		self._transport = transport

	@classmethod
	def from_env(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "OllamaClient":
		return cls(
			base_url=config.ollama_base_url(),
			model=config.ollama_model(),
			timeout_s=config.ollama_timeout_s(),
			transport=transport,
		)

	def _http_client(self, timeout_s: float) -> httpx.AsyncClient:
		return httpx.AsyncClient(
			base_url=self.base_url,
			timeout=httpx.Timeout(timeout_s),
			transport=self._transport,
		)

	async def _guarded(
		self,
		operation: Callable[[httpx.AsyncClient], Awaitable[Any]],
		*,
		cancel: Optional[CancelToken],
		timeout_s: float,
		label: str,
	) -> Any:
		"""Run ``operation`` until it finishes or the composed token fires."""
		async with CancelScope(cancel, timeout_s) as scope:
			if scope.token.cancelled:
				raise self._cancel_error(scope, label)
			logger.debug("%s: requesting %s", label, self.base_url)
			async with self._http_client(timeout_s) as client:
				task = asyncio.ensure_future(operation(client))
				waiter = asyncio.ensure_future(scope.token.wait())
				try:
					done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
					if task in done:
						result = task.result()
						logger.debug("%s: done", label)
						return result
					task.cancel()
					with suppress(asyncio.CancelledError):
						await task
					raise self._cancel_error(scope, label)
				except httpx.TimeoutException as exc:
					logger.debug("%s: failed (transport timeout)", label)
					raise RequestTimeout(f"Ollama did not answer within {timeout_s:g}s.") from exc
				except httpx.ConnectError as exc:
					logger.debug("%s: failed (unreachable)", label)
					raise UnreachableEndpoint(
						f"Cannot reach Ollama at {self.base_url}. Is it running?"
					) from exc
				except httpx.RequestError as exc:
					logger.debug("%s: failed (%s)", label, type(exc).__name__)
					raise UnreachableEndpoint(f"Request to Ollama failed: {exc}") from exc
				finally:
					for pending in (task, waiter):
						if not pending.done():
							pending.cancel()
					with suppress(asyncio.CancelledError):
						await waiter

	def _cancel_error(self, scope: CancelScope, label: str) -> GroundError:
		if scope.timed_out:
			logger.debug("%s: aborted (timeout)", label)
			return RequestTimeout(f"Ollama did not answer within {scope.timeout_s:g}s.")
		logger.debug("%s: aborted (%s)", label, scope.token.reason)
		return RequestAborted("Request to Ollama was cancelled.")

	# -- health ----------------------------------------------------------

	async def _fetch_tags(self, client: httpx.AsyncClient) -> List[str]:
		response = await client.get("/api/tags")
		if response.status_code >= 400:
			raise HttpError(response.status_code, _response_text(response))
		try:
			payload = response.json()
		except ValueError as exc:
			raise MalformedModelOutput("Ollama returned a non-JSON model listing.") from exc
		models = payload.get("models") if isinstance(payload, dict) else None
		if not isinstance(models, list):
			return []
		return [
			entry["name"]
			for entry in models
			if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]
		]

	async def health_check(self, cancel: Optional[CancelToken] = None) -> HealthResult:
		try:
			models = await self._guarded(
				self._fetch_tags,
				cancel=cancel,
				timeout_s=constants.HEALTH_CHECK_TIMEOUT_S,
				label="health_check",
			)
		except UnreachableEndpoint:
			return HealthResult(ok=False, reason="Cannot reach Ollama. Is it running at the configured base URL?")
		except (RequestTimeout, RequestAborted):
			return HealthResult(ok=False, reason="Request timed out or cancelled.")
		except GroundError as exc:
			return HealthResult(ok=False, reason=exc.message)
		return HealthResult(ok=True, models=models)

	async def ensure_ready(self, cancel: Optional[CancelToken] = None) -> HealthResult:
		"""Like ``health_check`` but raises the typed failure, and checks the configured model is installed."""
		models = await self._guarded(
			self._fetch_tags,
			cancel=cancel,
			timeout_s=constants.HEALTH_CHECK_TIMEOUT_S,
			label="ensure_ready",
		)
		if self.model not in models:
			installed = ", ".join(models[:5]) or "none"
			raise ModelNotInstalled(f'Model "{self.model}" not found in Ollama. Installed: {installed}')
		return HealthResult(ok=True, models=models)

	# -- chat ------------------------------------------------------------

	def _chat_body(self, messages: List[ChatMessage], *, stream: bool) -> Dict[str, Any]:
		return {"model": self.model, "stream": stream, "messages": list(messages)}

	async def chat_once(self, messages: List[ChatMessage], cancel: Optional[CancelToken] = None) -> str:
		async def operation(client: httpx.AsyncClient) -> str:
			response = await client.post("/api/chat", json=self._chat_body(messages, stream=False))
			if response.status_code >= 400:
				raise HttpError(response.status_code, _response_text(response))
			try:
				payload = response.json()
			except ValueError as exc:
				raise MalformedModelOutput("Ollama returned a non-JSON chat response.") from exc
			content = _frame_content(payload) if isinstance(payload, dict) else None
			if content is None:
				raise MalformedModelOutput("Ollama response missing message.content.")
			return content

		return await self._guarded(operation, cancel=cancel, timeout_s=self.timeout_s, label="chat_once")

	async def chat_stream(
		self,
		messages: List[ChatMessage],
		on_delta: DeltaCallback,
		cancel: Optional[CancelToken] = None,
	) -> StreamResult:
		"""Stream ``/api/chat`` and hand each non-empty content delta to ``on_delta``.

		Frames are newline-delimited JSON; a frame may straddle chunk boundaries.
		Reading stops at the first ``done`` frame.
		"""

		async def operation(client: httpx.AsyncClient) -> StreamResult:
			parts: List[str] = []
			frames = 0

			def consume(frame: Dict[str, Any]) -> None:
				nonlocal frames
				frames += 1
				delta = _frame_content(frame)
				if delta:
					parts.append(delta)
					on_delta(delta)

			async with client.stream("POST", "/api/chat", json=self._chat_body(messages, stream=True)) as response:
				if response.status_code >= 400:
					await response.aread()
					raise HttpError(response.status_code, _response_text(response))
				logger.debug("chat_stream: streaming")
				buffer = b""
				async for chunk in response.aiter_bytes():
					buffer += chunk
					while b"\n" in buffer:
						line, buffer = buffer.split(b"\n", 1)
						frame = _decode_frame(line)
						if frame is None:
							continue
						consume(frame)
						if frame.get("done") is True:
							return StreamResult(text="".join(parts), frames=frames, completed=True)

			completed = False
			trailing = _decode_frame(buffer) if buffer.strip() else None
			if trailing is not None:
				consume(trailing)
				completed = trailing.get("done") is True
			return StreamResult(text="".join(parts), frames=frames, completed=completed)

		return await self._guarded(operation, cancel=cancel, timeout_s=self.timeout_s, label="chat_stream")
