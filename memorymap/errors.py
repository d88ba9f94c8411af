from __future__ import annotations

from typing import Optional


class MemoryMapError(Exception):
	"""Base class for every error raised by the application."""


class ManualMetadataError(MemoryMapError):
	"""Manually entered metadata is incomplete."""


class SessionStateError(MemoryMapError):
	"""An upload session operation is not allowed in the current phase."""


class SessionNotFound(MemoryMapError):
	pass


class StorageError(MemoryMapError):
	"""Storage bucket or table operation failed.

	`error` is the short summary returned to clients, `details` the backend message.
	"""

	def __init__(self, error: str, details: Optional[str] = None):
		super().__init__(error if not details else f"{error}: {details}")
		self.error = error
		self.details = details

	def to_dict(self) -> dict:
		return {"error": self.error, "details": self.details}
