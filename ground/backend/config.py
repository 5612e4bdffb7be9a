from __future__ import annotations

import logging
import os

from ground.backend import constants


def _str_env(name: str, default: str) -> str:
	raw = os.getenv(name, "").strip()
	return raw or default


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def _float_env(name: str, default: float, minimum: float = 0.1) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def state_db_path() -> str:
	return _str_env("GROUND_STATE_DB_PATH", constants.DEFAULT_DB_PATH)


def ollama_base_url() -> str:
	return _str_env("GROUND_OLLAMA_BASE_URL", constants.DEFAULT_OLLAMA_BASE_URL).rstrip("/")


def ollama_model() -> str:
	return _str_env("GROUND_OLLAMA_MODEL", constants.DEFAULT_OLLAMA_MODEL)


def ollama_timeout_s() -> float:
	return _float_env("GROUND_OLLAMA_TIMEOUT_S", constants.DEFAULT_OLLAMA_TIMEOUT_S, minimum=1.0)


def server_host() -> str:
	return _str_env("GROUND_HOST", constants.DEFAULT_SERVER_HOST)


def server_port() -> int:
	return _int_env("GROUND_PORT", constants.DEFAULT_SERVER_PORT)


def log_level() -> int:
	name = _str_env("GROUND_LOG_LEVEL", "INFO").upper()
	level = logging.getLevelName(name)
	return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
	logging.basicConfig(
		level=log_level(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
