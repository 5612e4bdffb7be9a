from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

import httpx
from fastapi.testclient import TestClient

from ground.backend.ai.ollama_client import OllamaClient
from ground.backend.main import create_app
from ground.backend.state.session_store import SessionStore


def _parse_sse_events(raw: str):
	events = []
	for frame in raw.split("\n\n"):
		frame = frame.strip()
		if not frame:
			continue
		event_name = "message"
		data_lines = []
		for line in frame.splitlines():
			if line.startswith("event:"):
				event_name = line.split(":", 1)[1].strip()
			elif line.startswith("data:"):
				data_lines.append(line.split(":", 1)[1].strip())
		data = {}
		if data_lines:
			try:
				data = json.loads("\n".join(data_lines))
			except json.JSONDecodeError:
				data = {"raw": "\n".join(data_lines)}
		events.append((event_name, data))
	return events


def _streaming_handler(request: httpx.Request) -> httpx.Response:
	if request.url.path == "/api/tags":
		return httpx.Response(200, json={"models": [{"name": "llama3"}]})
	frames = [
		{"message": {"role": "assistant", "content": "Check the "}, "done": False},
		{"message": {"role": "assistant", "content": ""}, "done": False},
		{"message": {"role": "assistant", "content": "retry path."}, "done": False},
		{"done": True},
	]
	body = "".join(json.dumps(frame) + "\n" for frame in frames)
	return httpx.Response(200, content=body.encode("utf-8"))


def _failing_handler(request: httpx.Request) -> httpx.Response:
	if request.url.path == "/api/tags":
		raise httpx.ConnectError("Connection refused", request=request)
	return httpx.Response(500, text="model crashed")


class AssistantStreamTests(TestCase):
	def setUp(self) -> None:
		self._tmp = TemporaryDirectory()
		self.db_path = str(Path(self._tmp.name) / "state.db")

	def tearDown(self) -> None:
		self._tmp.cleanup()

	def _client(self, handler) -> TestClient:
		app = create_app(
			store=SessionStore.open(self.db_path),
			ollama=OllamaClient(base_url="http://ollama.test", model="llama3", transport=httpx.MockTransport(handler)),
		)
		return TestClient(app)

	def _stream(self, client: TestClient):
		with client.stream(
			"POST",
			"/api/assistant/stream",
			json={"messages": [{"role": "user", "content": "What am I missing?"}]},
		) as response:
			self.assertEqual(response.status_code, 200)
			self.assertIn("text/event-stream", response.headers.get("content-type", ""))
			self.assertEqual(response.headers.get("cache-control"), "no-cache")
			raw = "".join(response.iter_text())
		return _parse_sse_events(raw)

	def test_stream_emits_deltas_then_done(self) -> None:
		events = self._stream(self._client(_streaming_handler))
		names = [name for name, _ in events]
		self.assertEqual(names, ["delta", "delta", "done"])
		self.assertEqual([data["text"] for name, data in events if name == "delta"], ["Check the ", "retry path."])
		done = events[-1][1]
		self.assertEqual(done["text"], "Check the retry path.")
		self.assertEqual(done["frames"], 4)
		self.assertTrue(done["completed"])

	def test_upstream_failure_becomes_error_event(self) -> None:
		events = self._stream(self._client(_failing_handler))
		self.assertEqual(len(events), 1)
		name, data = events[0]
		self.assertEqual(name, "error")
		self.assertEqual(data["code"], "upstream_http_error")
		self.assertIn("HTTP 500", data["message"])

	def test_empty_message_list_is_rejected(self) -> None:
		response = self._client(_streaming_handler).post("/api/assistant/stream", json={"messages": []})
		self.assertEqual(response.status_code, 422)
		self.assertEqual(response.json()["error"]["code"], "validation_error")

	def test_health_reports_installed_model(self) -> None:
		data = self._client(_streaming_handler).get("/api/assistant/health").json()["data"]
		self.assertTrue(data["ok"])
		self.assertTrue(data["model_installed"])
		self.assertEqual(data["models"], ["llama3"])

	def test_health_reports_unreachable_host(self) -> None:
		data = self._client(_failing_handler).get("/api/assistant/health").json()["data"]
		self.assertFalse(data["ok"])
		self.assertFalse(data["model_installed"])
		self.assertIn("Cannot reach Ollama", data["reason"])
