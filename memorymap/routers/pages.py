from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse
from loguru import logger

from memorymap.errors import StorageError
from memorymap.services.gallery import parse_coordinate, render_map

router = APIRouter(tags=["pages"])


def _tiles(settings) -> str:
	tiles = settings.map_tiles
	if settings.map_api_key and "{api_key}" in tiles:
		tiles = tiles.replace("{api_key}", settings.map_api_key)
	return tiles


def _map_page(request: Request, lat: Optional[str], lon: Optional[str]) -> HTMLResponse:
	settings = request.app.state.settings
	try:
		records = request.app.state.store.list_images()
	except StorageError as e:
		logger.error("Image list unavailable, rendering an empty map: {}", e)
		records = []
	focus = None
	lat_f, lon_f = parse_coordinate(lat), parse_coordinate(lon)
	if lat_f is not None and lon_f is not None:
		focus = (lat_f, lon_f)
	html = render_map(records, focus=focus, tiles=_tiles(settings), attr=settings.map_attribution)
	return HTMLResponse(html)


@router.get("/", response_class=HTMLResponse, summary="Map page")
def index(request: Request, lat: Optional[str] = None, lon: Optional[str] = None):
	return _map_page(request, lat, lon)


@router.get("/{path:path}", include_in_schema=False)
def catch_all(request: Request, path: str, lat: Optional[str] = None, lon: Optional[str] = None):
	static_root = Path(request.app.state.settings.static_dir).resolve()
	candidate = (static_root / path).resolve()
	if candidate.is_relative_to(static_root) and candidate.is_file():
		return FileResponse(candidate)
	if "." in path:
		return PlainTextResponse("Not found", status_code=404)
	return _map_page(request, lat, lon)
