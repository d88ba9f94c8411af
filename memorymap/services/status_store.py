from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict


class StatusStore:
	"""One JSON status document per upload session, readable while the session is busy."""

	def __init__(self, root: Path):
		self.root = Path(root)
		self.root.mkdir(parents=True, exist_ok=True)

	def _path(self, session_id: str) -> Path:
		return self.root / f"{session_id}.json"

	def write_status(self, session_id: str, data: Dict[str, Any]) -> None:
		status_path = self._path(session_id)
		tmp_path = status_path.with_suffix(".tmp")
		with tmp_path.open("w", encoding="utf-8") as f:
			json.dump(data, f, indent=2, ensure_ascii=False)
		tmp_path.replace(status_path)

	def read_status(self, session_id: str) -> Dict[str, Any]:
		status_path = self._path(session_id)
		if not status_path.exists():
			return {"session_id": session_id, "phase": "unknown"}
		with status_path.open("r", encoding="utf-8") as f:
			return json.load(f)

	def exists(self, session_id: str) -> bool:
		return self._path(session_id).exists()

	def delete(self, session_id: str) -> None:
		self._path(session_id).unlink(missing_ok=True)
