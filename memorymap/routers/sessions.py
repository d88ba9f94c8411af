from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, Request, UploadFile
from fastapi.responses import FileResponse

from memorymap.errors import SessionNotFound
from memorymap.routers.upload_images import UPLOAD_DONE_MESSAGE, read_upload
from memorymap.services.upload_pipeline import SessionRegistry, UploadSession

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _registry(request: Request) -> SessionRegistry:
	return request.app.state.registry


def _payload(request: Request, session: UploadSession) -> Dict[str, Any]:
	base = request.app.state.settings.public_api_url.rstrip("/")
	data = session.snapshot()
	data["status_endpoint"] = f"{base}/api/sessions/{session.id}"
	data["preview_endpoint"] = f"{base}/api/sessions/{session.id}/preview" if data["preview_available"] else None
	return data


@router.post("", summary="Open an upload session for a selected file")
def create_session(request: Request, file: UploadFile = File(...), name: str = Form("")):
	session = _registry(request).create()
	session.select_file(read_upload(file), name=name)
	return _payload(request, session)


@router.get("/{session_id}", summary="Latest status of an upload session")
def session_status(request: Request, session_id: str):
	status_store = request.app.state.status_store
	if not status_store.exists(session_id):
		raise SessionNotFound(session_id)
	return status_store.read_status(session_id)


@router.post("/{session_id}/file", summary="Select a different file")
def reselect_file(request: Request, session_id: str, file: UploadFile = File(...), name: str = Form("")):
	session = _registry(request).get(session_id)
	session.select_file(read_upload(file), name=name)
	return _payload(request, session)


@router.post("/{session_id}/places", summary="Search places for manual location entry")
def search_places(request: Request, session_id: str, query: str = Form("")):
	session = _registry(request).get(session_id)
	results = session.search_places(query)
	return {"results": [dict(asdict(r), index=i) for i, r in enumerate(results)]}


@router.post("/{session_id}/metadata", summary="Set date and location manually")
def manual_metadata(
	request: Request,
	session_id: str,
	date: str = Form(""),
	place_index: Optional[int] = Form(None),
):
	session = _registry(request).get(session_id)
	session.apply_manual_metadata(date, place_index)
	return _payload(request, session)


@router.post("/{session_id}/submit", summary="Upload the prepared file")
def submit(request: Request, session_id: str, background_tasks: BackgroundTasks, name: Optional[str] = Form(None)):
	registry = _registry(request)
	session = registry.get(session_id)
	record = session.submit(name=name)
	payload = _payload(request, session)
	background_tasks.add_task(registry.close_later, session_id, request.app.state.settings.close_delay_s)
	payload.update({"success": True, "imageURL": record.image_url, "message": UPLOAD_DONE_MESSAGE})
	return payload


@router.get("/{session_id}/preview", summary="Preview image of the prepared file")
def preview(request: Request, session_id: str):
	path = _registry(request).get(session_id).preview_path()
	if path is None or not path.exists():
		raise SessionNotFound(f"{session_id}/preview")
	return FileResponse(path, media_type="image/jpeg")


@router.delete("/{session_id}", summary="Close an upload session and discard its state")
def close_session(request: Request, session_id: str):
	if not _registry(request).close(session_id):
		raise SessionNotFound(session_id)
	return {"session_id": session_id, "closed": True}
