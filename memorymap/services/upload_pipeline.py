from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from memorymap.errors import ManualMetadataError, SessionNotFound, SessionStateError, StorageError
from memorymap.models import ExtractedMetadata, ImageRecord, PlaceResult, UploadedFile
from memorymap.services.geocoding import Geocoder, format_coordinates
from memorymap.services.metadata import MetadataExtractor
from memorymap.services.normalization import is_heic, transcode
from memorymap.services.previews import PreviewHandle, generate_preview, release_preview
from memorymap.services.status_store import StatusStore
from memorymap.services.storage import ImageStore

STATUS_PROCESSING = "파일 처리 중..."
STATUS_READING_METADATA = "메타데이터 읽는 중..."
STATUS_METADATA_FOUND = "메타데이터 추출 완료"
STATUS_METADATA_MISSING = "메타데이터 정보 없음"
STATUS_CONVERTING = "HEIC 파일 변환 중..."
STATUS_CONVERTED = "HEIC 변환 완료"
STATUS_CONVERSION_FAILED = "오류: HEIC 파일 변환에 실패했습니다."
STATUS_EMPTY_FILE = "오류: 빈 파일입니다."
STATUS_UNREADABLE = "오류: 이미지를 읽을 수 없습니다."
STATUS_METADATA_EDITED = "메타데이터 수정 완료"
STATUS_UPLOADING = "업로드 중..."
STATUS_UPLOADED = "업로드 완료!"
STATUS_UPLOAD_FAILED = "업로드 실패"

MANUAL_METADATA_REQUIRED = "날짜와 위치를 모두 입력해주세요."


class Phase(str, Enum):
	IDLE = "idle"
	DETECTING = "detecting"
	EXTRACTING_METADATA = "extracting_metadata"
	CONVERTING_FORMAT = "converting_format"
	AWAITING_MANUAL_METADATA = "awaiting_manual_metadata"
	READY_TO_SUBMIT = "ready_to_submit"
	SUBMITTING = "submitting"
	DONE = "done"
	FAILED = "failed"


@dataclass
class UploadState:
	phase: Phase = Phase.IDLE
	status: str = ""
	file: Optional[UploadedFile] = None
	preview: Optional[PreviewHandle] = None
	name: str = ""
	date: str = ""
	location: str = ""
	latitude: str = ""
	longitude: str = ""
	has_metadata: bool = False
	place_results: List[PlaceResult] = field(default_factory=list)
	record: Optional[ImageRecord] = None

	@property
	def can_submit(self) -> bool:
		if self.file is None:
			return False
		# FAILED with a prepared file only happens after a rejected submit, which may be retried
		return self.phase in (Phase.READY_TO_SUBMIT, Phase.FAILED)


def _usable_coordinates(metadata: ExtractedMetadata) -> bool:
	if not metadata.has_coordinates:
		return False
	return -90.0 <= metadata.latitude <= 90.0 and -180.0 <= metadata.longitude <= 180.0


class UploadSession:
	"""One upload drawer: file selection through submission.

	All state lives in an `UploadState` that only the transition methods below modify.
	Every transition writes the session's status document.
	"""

	def __init__(
		self,
		session_id: str,
		store: ImageStore,
		geocoder: Geocoder,
		status_store: StatusStore,
		preview_dir: Path,
		extractor: Optional[MetadataExtractor] = None,
	):
		self.id = session_id
		self.store = store
		self.geocoder = geocoder
		self.status_store = status_store
		self.preview_dir = Path(preview_dir)
		self.extractor = extractor or MetadataExtractor()
		self.closed = False
		self._state = UploadState()
		self._lock = threading.RLock()
		self._write_status()

	@property
	def state(self) -> UploadState:
		with self._lock:
			return replace(self._state, place_results=list(self._state.place_results))

	def snapshot(self) -> Dict[str, Any]:
		with self._lock:
			s = self._state
			return {
				"session_id": self.id,
				"phase": s.phase.value,
				"status": s.status,
				"name": s.name,
				"date": s.date,
				"location": s.location,
				"latitude": s.latitude,
				"longitude": s.longitude,
				"has_metadata": s.has_metadata,
				"awaiting_manual_metadata": s.phase == Phase.AWAITING_MANUAL_METADATA,
				"can_submit": s.can_submit,
				"file_name": s.file.name if s.file else None,
				"file_type": s.file.content_type if s.file else None,
				"file_size": s.file.size if s.file else None,
				"preview_available": s.preview is not None and not s.preview.released,
				"image_url": s.record.image_url if s.record else None,
			}

	@property
	def submitting(self) -> bool:
		return self._state.phase == Phase.SUBMITTING

	def preview_path(self) -> Optional[Path]:
		with self._lock:
			preview = self._state.preview
			if preview is None or preview.released:
				return None
			return preview.path

	def _write_status(self) -> None:
		if not self.closed:
			self.status_store.write_status(self.id, self.snapshot())

	def _transition(self, phase: Phase, status: Optional[str] = None) -> None:
		self._state.phase = phase
		if status is not None:
			self._state.status = status
		logger.info("Session {}: {} ({})", self.id, phase.value, self._state.status)
		self._write_status()

	def _fail(self, status: str) -> None:
		release_preview(self._state.preview)
		self._state.preview = None
		self._state.file = None
		self._transition(Phase.FAILED, status)

	def _check_open(self) -> None:
		if self.closed:
			raise SessionStateError(f"session {self.id} is closed")

	def select_file(self, file: UploadedFile, name: Optional[str] = None) -> UploadState:
		"""Run detection, extraction and conversion for a newly selected file."""
		with self._lock:
			self._check_open()
			if self._state.phase == Phase.SUBMITTING:
				raise SessionStateError("an upload is in progress")

			release_preview(self._state.preview)
			self._state = UploadState(name=(name or "").strip())
			self._transition(Phase.DETECTING, STATUS_PROCESSING)
			if file.size == 0:
				self._fail(STATUS_EMPTY_FILE)
				return self.state
			heic = is_heic(file)

			self._transition(Phase.EXTRACTING_METADATA, STATUS_READING_METADATA)
			metadata = self.extractor.extract(file)
			has_metadata = self._apply_extracted(metadata) if metadata is not None else False
			self._state.has_metadata = has_metadata
			self._state.status = STATUS_METADATA_FOUND if has_metadata else STATUS_METADATA_MISSING
			self._write_status()

			displayable = file
			if heic:
				self._transition(Phase.CONVERTING_FORMAT, STATUS_CONVERTING)
				converted = transcode(file)
				if converted is None:
					self._fail(STATUS_CONVERSION_FAILED)
					return self.state
				displayable = converted
				self._state.status = STATUS_CONVERTED if has_metadata else STATUS_METADATA_MISSING

			try:
				preview = generate_preview(displayable, self.preview_dir)
			except (OSError, ValueError) as e:
				logger.error("Session {}: cannot decode {}: {}", self.id, displayable.name, e)
				self._fail(STATUS_UNREADABLE)
				return self.state
			self._state.preview = preview
			self._state.file = displayable

			if has_metadata:
				self._transition(Phase.READY_TO_SUBMIT)
			else:
				self._transition(Phase.AWAITING_MANUAL_METADATA)
			return self.state

	def _apply_extracted(self, metadata: ExtractedMetadata) -> bool:
		found = False
		if _usable_coordinates(metadata):
			lat, lon = metadata.latitude, metadata.longitude
			self._state.latitude = str(lat)
			self._state.longitude = str(lon)
			try:
				self._state.location = self.geocoder.reverse_geocode(lat, lon)
			except Exception as e:
				logger.warning("Session {}: geocoder raised, using coordinates: {}", self.id, e)
				self._state.location = format_coordinates(lat, lon)
			found = True
		if metadata.captured_at:
			self._state.date = metadata.captured_at
			found = True
		return found

	def search_places(self, query: str) -> List[PlaceResult]:
		with self._lock:
			self._check_open()
		results = self.geocoder.search_places(query)
		with self._lock:
			self._check_open()
			self._state.place_results = list(results)
			return list(results)

	def apply_manual_metadata(self, date: Optional[str], place_index: Optional[int]) -> UploadState:
		"""Set date and location from a place picked out of the last search results."""
		with self._lock:
			self._check_open()
			if self._state.phase not in (Phase.AWAITING_MANUAL_METADATA, Phase.READY_TO_SUBMIT):
				raise SessionStateError(f"cannot edit metadata while {self._state.phase.value}")
			results = self._state.place_results
			if not date or not date.strip() or place_index is None or not 0 <= place_index < len(results):
				raise ManualMetadataError(MANUAL_METADATA_REQUIRED)
			place = results[place_index]
			self._state.date = date.strip()
			self._state.location = place.display_name
			self._state.latitude = place.lat
			self._state.longitude = place.lon
			self._state.has_metadata = True
			self._state.place_results = []
			self._transition(Phase.READY_TO_SUBMIT, STATUS_METADATA_EDITED)
			return self.state

	def submit(self, name: Optional[str] = None) -> ImageRecord:
		with self._lock:
			self._check_open()
			if not self._state.can_submit:
				raise SessionStateError(f"nothing to upload while {self._state.phase.value}")
			if name is not None and name.strip():
				self._state.name = name.strip()
			s = self._state
			file = s.file
			fields = dict(name=s.name or file.name, date=s.date, location=s.location, latitude=s.latitude, longitude=s.longitude)
			self._transition(Phase.SUBMITTING, STATUS_UPLOADING)

		# the lock is released so the session can be closed while the backend call runs
		try:
			record = self.store.save(file, **fields)
		except StorageError as e:
			with self._lock:
				if self.closed:
					logger.info("Session {} closed during upload; ignoring failure", self.id)
				else:
					self._transition(Phase.FAILED, f"{STATUS_UPLOAD_FAILED}: {e.error}")
			raise

		with self._lock:
			if self.closed:
				logger.info("Session {} closed during upload; ignoring result", self.id)
				return record
			self._state.record = record
			self._transition(Phase.DONE, STATUS_UPLOADED)
		return record

	def close(self) -> None:
		"""Release the preview and discard all state. Safe to call more than once."""
		with self._lock:
			if self.closed:
				return
			release_preview(self._state.preview)
			self._state = UploadState()
			self.closed = True
			self.status_store.delete(self.id)
			logger.info("Session {} closed", self.id)


class SessionRegistry:
	"""Live upload sessions. Sessions idle for longer than `idle_ttl_s` are closed on the next create or get."""

	def __init__(
		self,
		store: ImageStore,
		geocoder: Geocoder,
		status_store: StatusStore,
		preview_dir: Path,
		extractor: Optional[MetadataExtractor] = None,
		idle_ttl_s: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	):
		self.store = store
		self.geocoder = geocoder
		self.status_store = status_store
		self.preview_dir = Path(preview_dir)
		self.extractor = extractor
		self.idle_ttl_s = idle_ttl_s
		self._clock = clock
		self._sessions: Dict[str, UploadSession] = {}
		self._last_seen: Dict[str, float] = {}
		self._lock = threading.Lock()

	def create(self) -> UploadSession:
		self.sweep()
		session_id = uuid.uuid4().hex
		session = UploadSession(session_id, self.store, self.geocoder, self.status_store, self.preview_dir, self.extractor)
		with self._lock:
			self._sessions[session_id] = session
			self._last_seen[session_id] = self._clock()
		return session

	def get(self, session_id: str) -> UploadSession:
		self.sweep()
		with self._lock:
			session = self._sessions.get(session_id)
			if session is not None:
				self._last_seen[session_id] = self._clock()
		if session is None:
			raise SessionNotFound(session_id)
		return session

	def sweep(self) -> int:
		"""Close sessions idle for longer than the TTL. An upload in flight is never swept."""
		if self.idle_ttl_s is None:
			return 0
		now = self._clock()
		expired = []
		with self._lock:
			for session_id, seen in list(self._last_seen.items()):
				session = self._sessions[session_id]
				if now - seen > self.idle_ttl_s and not session.submitting:
					expired.append(self._sessions.pop(session_id))
					del self._last_seen[session_id]
		for session in expired:
			logger.info("Session {} idle for over {}s, closing", session.id, self.idle_ttl_s)
			session.close()
		return len(expired)

	def count(self) -> int:
		with self._lock:
			return len(self._sessions)

	def close(self, session_id: str) -> bool:
		with self._lock:
			session = self._sessions.pop(session_id, None)
			self._last_seen.pop(session_id, None)
		if session is None:
			return False
		session.close()
		return True

	def close_later(self, session_id: str, delay_s: float) -> None:
		"""Close a finished session once its success status has been visible for `delay_s`."""
		time.sleep(delay_s)
		self.close(session_id)

	def close_all(self) -> None:
		with self._lock:
			sessions = list(self._sessions.values())
			self._sessions.clear()
			self._last_seen.clear()
		for session in sessions:
			session.close()
