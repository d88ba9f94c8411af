from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from loguru import logger

from memorymap.models import UploadedFile

router = APIRouter(prefix="/api", tags=["images"])

UPLOAD_DONE_MESSAGE = "업로드가 완료되었습니다."


def read_upload(upload: UploadFile) -> UploadedFile:
	return UploadedFile(
		name=upload.filename or "image.jpg",
		content_type=upload.content_type or "application/octet-stream",
		data=upload.file.read(),
	)


@router.post("/upload", summary="Store an image and its metadata")
def upload(
	request: Request,
	file: Optional[UploadFile] = File(None),
	name: Optional[str] = Form(None),
	date: Optional[str] = Form(None),
	location: Optional[str] = Form(None),
	latitude: Optional[str] = Form(None),
	longitude: Optional[str] = Form(None),
):
	if file is None:
		return JSONResponse(status_code=400, content={"error": "No file uploaded"})
	uploaded = read_upload(file)
	if uploaded.size == 0:
		return JSONResponse(status_code=400, content={"error": "Empty file"})

	record = request.app.state.store.save(
		uploaded, name=name, date=date, location=location, latitude=latitude, longitude=longitude
	)
	logger.info("Uploaded {} -> {}", uploaded.name, record.image_url)
	return {"success": True, "imageURL": record.image_url, "message": UPLOAD_DONE_MESSAGE}


@router.get("/images", summary="List all stored images, newest capture first")
def images(request: Request):
	records = request.app.state.store.list_images()
	return {"success": True, "images": [r.to_dict() for r in records]}
