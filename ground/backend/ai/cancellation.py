from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"
CANCELLED_REASON = "cancelled"

CancelCallback = Callable[[str], None]


class CancelToken:
	"""One-shot cancellation signal. The first ``cancel`` wins; later calls are ignored."""

	def __init__(self) -> None:
		self._event = asyncio.Event()
		self._reason: Optional[str] = None
		self._callbacks: List[CancelCallback] = []
		self._links: List[Callable[[], None]] = []

	@property
	def cancelled(self) -> bool:
		return self._reason is not None

	@property
	def reason(self) -> Optional[str]:
		return self._reason

	def cancel(self, reason: str = CANCELLED_REASON) -> bool:
		if self._reason is not None:
			return False
		self._reason = reason
		self._event.set()
		callbacks = list(self._callbacks)
		self._callbacks.clear()
		for callback in callbacks:
			try:
				callback(reason)
			except Exception:
				logger.exception("Cancel callback failed")
		return True

	async def wait(self) -> str:
		await self._event.wait()
		return self._reason or CANCELLED_REASON

	def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
		if self._reason is not None:
			callback(self._reason)
			return lambda: None
		self._callbacks.append(callback)

		def remove() -> None:
			if callback in self._callbacks:
				self._callbacks.remove(callback)

		return remove

	def release(self) -> None:
		"""Detach this token from the tokens it was linked to by ``any``."""
		links = list(self._links)
		self._links.clear()
		for remove in links:
			remove()

	@classmethod
	def any(cls, *tokens: Optional["CancelToken"]) -> "CancelToken":
		"""A token that fires with the reason of whichever source fires first."""
		linked = cls()
		for source in tokens:
			if source is None:
				continue
			linked._links.append(source.add_callback(linked.cancel))
			if linked.cancelled:
				break
		return linked


class CancelScope:
	"""Compose an optional caller token with an internal timeout.

	``async with CancelScope(token, 30.0) as scope`` yields a scope whose ``token``
	fires on whichever comes first. The timer and links are released on exit.
	"""

	def __init__(self, external: Optional[CancelToken] = None, timeout_s: Optional[float] = None):
		self.external = external
		self.timeout_s = timeout_s
		self._timeout = CancelToken()
		self._timer: Optional[asyncio.TimerHandle] = None
		self.token = CancelToken()
		self.timed_out = False

	@property
	def aborted(self) -> bool:
		return self.token.cancelled and not self.timed_out

	def _record_cause(self, _reason: str) -> None:
		self.timed_out = self._timeout.cancelled

	async def __aenter__(self) -> "CancelScope":
		if self.timeout_s is not None and self.timeout_s > 0:
			loop = asyncio.get_running_loop()
			self._timer = loop.call_later(self.timeout_s, self._timeout.cancel, TIMEOUT_REASON)
		self.token = CancelToken.any(self.external, self._timeout)
		self.token.add_callback(self._record_cause)
		return self

	async def __aexit__(self, exc_type, exc, tb) -> bool:
		if self._timer is not None:
			self._timer.cancel()
			self._timer = None
		self.token.release()
		return False
