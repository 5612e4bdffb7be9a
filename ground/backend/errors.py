from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class GroundError(Exception):
	status_code = 500
	code = "internal_error"

	def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None):
		super().__init__(message)
		self.message = message
		if status_code is not None:
			self.status_code = status_code
		if code is not None:
			self.code = code


class NotFound(GroundError, LookupError):
	status_code = 404
	code = "not_found"


class UnknownCard(NotFound):
	code = "unknown_card"

	def __init__(self, card_id: str):
		super().__init__(f"Provocation card not found: {card_id}")
		self.card_id = card_id


class ArchivedSessionError(GroundError):
	status_code = 409
	code = "session_archived"

	def __init__(self, session_id: str):
		super().__init__(f"Session {session_id} is archived and cannot be activated.")
		self.session_id = session_id


class ValidationFailed(GroundError, ValueError):
	status_code = 400
	code = "validation_error"


class EmptyRationale(ValidationFailed):
	code = "empty_rationale"

	def __init__(self, card_id: str):
		super().__init__(f"A rationale is required to respond to card {card_id}.")
		self.card_id = card_id


class GateLocked(GroundError):
	status_code = 423
	code = "gate_locked"


class MalformedModelOutput(GroundError):
	status_code = 502
	code = "malformed_model_output"


class SchemaViolation(GroundError):
	status_code = 502
	code = "schema_violation"

	def __init__(self, message: str, *, position: Optional[int] = None):
		if position is not None:
			message = f"Item {position}: {message}"
		super().__init__(message)
		self.position = position


class ModelNotInstalled(GroundError):
	status_code = 503
	code = "model_not_installed"


class UnreachableEndpoint(GroundError):
	status_code = 503
	code = "endpoint_unreachable"


class RequestTimeout(GroundError):
	status_code = 504
	code = "request_timeout"


class RequestAborted(GroundError):
	status_code = 499
	code = "request_aborted"


class HttpError(GroundError):
	status_code = 502
	code = "upstream_http_error"

	def __init__(self, upstream_status: int, body: str = ""):
		detail = body.strip()
		message = f"Model host returned HTTP {upstream_status}"
		if detail:
			message = f"{message}: {detail}"
		super().__init__(message)
		self.upstream_status = upstream_status
		self.body = detail


def to_http_exception(exc: GroundError) -> HTTPException:
	return HTTPException(
		status_code=exc.status_code,
		detail={"code": exc.code, "message": exc.message},
	)
