from __future__ import annotations

import asyncio
import json
from unittest import IsolatedAsyncioTestCase

import httpx

from ground.backend.ai.cancellation import CancelToken
from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.errors import (
	HttpError,
	MalformedModelOutput,
	ModelNotInstalled,
	RequestAborted,
	RequestTimeout,
	UnreachableEndpoint,
)


_MESSAGES = [{"role": "user", "content": "hi"}]


def _client(handler, **kwargs) -> OllamaClient:
	return OllamaClient(
		base_url="http://ollama.test/",
		model="qwen2.5-coder:3b",
		transport=httpx.MockTransport(handler),
		**kwargs,
	)


class OllamaStreamTests(IsolatedAsyncioTestCase):
	async def test_frames_split_across_chunks_are_reassembled(self) -> None:
		chunks = [
			b'{"message":{"content":"Hel',
			b'lo"},"done":false}\n{"message":{"content":"!"},"done":false}\n',
			b'{"done":true}\n',
			b'{"message":{"content":"never read"},"done":false}\n',
		]
		pulled = []
		requests = []

		async def body():
			for chunk in chunks:
				pulled.append(chunk)
				yield chunk

		def handler(request: httpx.Request) -> httpx.Response:
			requests.append(json.loads(request.content))
			return httpx.Response(200, content=body())

		deltas = []
		result = await _client(handler).chat_stream(_MESSAGES, deltas.append)

		self.assertEqual(deltas, ["Hello", "!"])
		self.assertEqual(result.text, "Hello!")
		self.assertTrue(result.completed)
		self.assertEqual(result.frames, 3)
		self.assertEqual(len(pulled), 3)
		self.assertEqual(requests[0]["stream"], True)
		self.assertEqual(requests[0]["model"], "qwen2.5-coder:3b")

	async def test_malformed_and_blank_lines_are_skipped(self) -> None:
		payload = (
			b'\n'
			b'not json at all\n'
			b'{"message":{"content":"ok"}}\n'
			b'\xff\xfe\n'
			b'[1,2]\n'
			b'{"message":{"content":""}}\n'
			b'{"message":{"content":" tail"},"done":true}'
		)

		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, content=payload)

		deltas = []
		result = await _client(handler).chat_stream(_MESSAGES, deltas.append)
		self.assertEqual(deltas, ["ok", " tail"])
		self.assertTrue(result.completed)

	async def test_stream_without_done_ends_cleanly(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, content=b'{"message":{"content":"a"}}\n{"message":{"content":"b"')

		deltas = []
		result = await _client(handler).chat_stream(_MESSAGES, deltas.append)
		self.assertEqual(deltas, ["a"])
		self.assertFalse(result.completed)

	async def test_error_status_carries_body(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(404, text='{"error":"model not found"}')

		with self.assertRaises(HttpError) as caught:
			await _client(handler).chat_stream(_MESSAGES, lambda _delta: None)
		self.assertEqual(caught.exception.upstream_status, 404)
		self.assertIn("model not found", caught.exception.message)

	async def test_caller_cancel_aborts_stream(self) -> None:
		async def body():
			yield b'{"message":{"content":"first"}}\n'
			await asyncio.sleep(10)
			yield b'{"done":true}\n'

		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, content=body())

		token = CancelToken()
		deltas = []

		def on_delta(delta: str) -> None:
			deltas.append(delta)
			token.cancel("user")

		with self.assertRaises(RequestAborted):
			await _client(handler).chat_stream(_MESSAGES, on_delta, cancel=token)
		self.assertEqual(deltas, ["first"])

	async def test_timeout_aborts_hung_request(self) -> None:
		async def handler(request: httpx.Request) -> httpx.Response:
			await asyncio.sleep(10)
			return httpx.Response(200, json={})

		with self.assertRaises(RequestTimeout):
			await _client(handler, timeout_s=0.05).chat_stream(_MESSAGES, lambda _delta: None)

	async def test_pre_cancelled_token_never_sends(self) -> None:
		requests = []

		def handler(request: httpx.Request) -> httpx.Response:
			requests.append(request)
			return httpx.Response(200, json={"message": {"content": "x"}})

		token = CancelToken()
		token.cancel()
		with self.assertRaises(RequestAborted):
			await _client(handler).chat_once(_MESSAGES, cancel=token)
		self.assertEqual(requests, [])


class OllamaChatOnceTests(IsolatedAsyncioTestCase):
	async def test_returns_message_content(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			self.assertEqual(request.url.path, "/api/chat")
			self.assertEqual(json.loads(request.content)["stream"], False)
			return httpx.Response(200, json={"message": {"role": "assistant", "content": "answer"}})

		self.assertEqual(await _client(handler).chat_once(_MESSAGES), "answer")

	async def test_missing_content_is_malformed(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, json={"message": {"role": "assistant"}})

		with self.assertRaises(MalformedModelOutput):
			await _client(handler).chat_once(_MESSAGES)

	async def test_connection_refused_is_unreachable(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			raise httpx.ConnectError("Connection refused", request=request)

		with self.assertRaises(UnreachableEndpoint):
			await _client(handler).chat_once(_MESSAGES)


class OllamaHealthTests(IsolatedAsyncioTestCase):
	async def test_lists_installed_models(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			self.assertEqual(request.url.path, "/api/tags")
			return httpx.Response(200, json={"models": [{"name": "qwen2.5-coder:3b"}, {"size": 1}, {"name": "llama3:8b"}]})

		client = _client(handler)
		health = await client.health_check()
		self.assertTrue(health.ok)
		self.assertEqual(health.models, ["qwen2.5-coder:3b", "llama3:8b"])
		self.assertEqual((await client.ensure_ready()).models, health.models)

	async def test_unreachable_host_reports_reason(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			raise httpx.ConnectError("Connection refused", request=request)

		health = await _client(handler).health_check()
		self.assertFalse(health.ok)
		self.assertIn("Cannot reach Ollama", health.reason)
		with self.assertRaises(UnreachableEndpoint):
			await _client(handler).ensure_ready()

	async def test_missing_model_is_reported(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, json={"models": [{"name": "llama3:8b"}]})

		with self.assertRaises(ModelNotInstalled) as caught:
			await _client(handler).ensure_ready()
		self.assertIn("llama3:8b", caught.exception.message)

	async def test_ready_check_keeps_timeout_distinct(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			raise httpx.ReadTimeout("timed out", request=request)

		with self.assertRaises(RequestTimeout):
			await _client(handler).ensure_ready()

	async def test_ready_check_keeps_cancellation_distinct(self) -> None:
		requests = []

		def handler(request: httpx.Request) -> httpx.Response:
			requests.append(request)
			return httpx.Response(200, json={"models": [{"name": "qwen2.5-coder:3b"}]})

		token = CancelToken()
		token.cancel("user")
		with self.assertRaises(RequestAborted):
			await _client(handler).ensure_ready(cancel=token)
		self.assertEqual(requests, [])

	async def test_ready_check_surfaces_upstream_status(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(500, text="boom")

		with self.assertRaises(HttpError) as caught:
			await _client(handler).ensure_ready()
		self.assertEqual(caught.exception.upstream_status, 500)
