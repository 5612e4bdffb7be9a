from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from ground.backend import constants


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _connect(path: str) -> sqlite3.Connection:
	conn = sqlite3.connect(path, timeout=constants.SQLITE_BUSY_TIMEOUT_MS / 1000)
	conn.execute("PRAGMA journal_mode=WAL")
	conn.execute("PRAGMA synchronous=NORMAL")
	conn.execute(f"PRAGMA busy_timeout={constants.SQLITE_BUSY_TIMEOUT_MS}")
	return conn


class SlotStorage:
	"""Named JSON blobs in one SQLite table.

	Each slot holds a whole serialized document. ``write`` applies every put and
	delete in a single transaction so a migration that fills one slot and clears
	another can never be observed half-done.
	"""

	def __init__(self, db_path: Optional[str] = None):
		self.db_path = db_path or constants.DEFAULT_DB_PATH
		self._initialized = False

	def init_db(self) -> None:
		if self._initialized:
			return
		Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
		conn = _connect(self.db_path)
		try:
			conn.execute(
				"""
				CREATE TABLE IF NOT EXISTS state_slots (
					key TEXT PRIMARY KEY,
					value TEXT NOT NULL,
					updated_at TEXT NOT NULL
				)
				"""
			)
			conn.commit()
		finally:
			conn.close()
		self._initialized = True

	def read(self, key: str) -> Optional[Any]:
		self.init_db()
		conn = _connect(self.db_path)
		try:
			row = conn.execute("SELECT value FROM state_slots WHERE key = ?", (key,)).fetchone()
		finally:
			conn.close()
		if row is None:
			return None
		return json.loads(row[0])

	def write(
		self,
		puts: Optional[Mapping[str, Any]] = None,
		deletes: Sequence[str] = (),
	) -> None:
		self.init_db()
		updated_at = _now_iso()
		conn = _connect(self.db_path)
		try:
			with conn:
				for key, value in (puts or {}).items():
					conn.execute(
						"""
						INSERT INTO state_slots (key, value, updated_at)
						VALUES (?, ?, ?)
						ON CONFLICT(key)
						DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
						""",
						(key, json.dumps(value, ensure_ascii=False, sort_keys=True), updated_at),
					)
				for key in deletes:
					conn.execute("DELETE FROM state_slots WHERE key = ?", (key,))
		finally:
			conn.close()

	def put(self, key: str, value: Any) -> None:
		self.write(puts={key: value})

	def delete(self, key: str) -> None:
		self.write(deletes=(key,))

	def get_storage_meta(self) -> Dict[str, object]:
		self.init_db()
		conn = _connect(self.db_path)
		try:
			quick_check = conn.execute("PRAGMA quick_check").fetchone()[0]
			journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
			slots = [row[0] for row in conn.execute("SELECT key FROM state_slots ORDER BY key")]
			return {
				"path": self.db_path,
				"journal_mode": journal_mode,
				"quick_check": quick_check,
				"slots": slots,
			}
		finally:
			conn.close()
