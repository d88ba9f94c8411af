from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from memorymap.config import Settings
from memorymap.errors import ManualMetadataError, SessionNotFound, SessionStateError, StorageError
from memorymap.logging import init_logging
from memorymap.routers.pages import router as pages_router
from memorymap.routers.sessions import router as sessions_router
from memorymap.routers.upload_images import router as upload_router
from memorymap.services.geocoding import Geocoder
from memorymap.services.status_store import StatusStore
from memorymap.services.storage import ImageStore
from memorymap.services.upload_pipeline import SessionRegistry


def _register_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StorageError)
	async def storage_error(request: Request, exc: StorageError):
		return JSONResponse(status_code=500, content=exc.to_dict())

	@app.exception_handler(ManualMetadataError)
	async def manual_metadata_error(request: Request, exc: ManualMetadataError):
		return JSONResponse(status_code=400, content={"error": str(exc)})

	@app.exception_handler(SessionStateError)
	async def session_state_error(request: Request, exc: SessionStateError):
		return JSONResponse(status_code=409, content={"error": str(exc)})

	@app.exception_handler(SessionNotFound)
	async def session_not_found(request: Request, exc: SessionNotFound):
		return JSONResponse(status_code=404, content={"error": "Not found", "details": str(exc)})

	@app.exception_handler(Exception)
	async def unexpected_error(request: Request, exc: Exception):
		logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
		return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


@asynccontextmanager
async def _lifespan(app: FastAPI):
	yield
	app.state.registry.close_all()


def create_app(
	settings: Optional[Settings] = None,
	store: Optional[ImageStore] = None,
	geocoder: Optional[Geocoder] = None,
) -> FastAPI:
	settings = settings or Settings.from_env()
	init_logging(settings.log_dir, settings.log_level)

	app = FastAPI(title="MemoryMap API", version="0.1.0", lifespan=_lifespan)

	# CORS (adjust origins in production)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=False,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	store = store or ImageStore.from_settings(settings)
	geocoder = geocoder or Geocoder(
		reverse_url=settings.reverse_geocode_url,
		search_url=settings.place_search_url,
		user_agent=settings.user_agent,
	)
	status_store = StatusStore(settings.status_dir)
	registry = SessionRegistry(store, geocoder, status_store, settings.preview_dir, idle_ttl_s=settings.session_ttl_s)

	app.state.settings = settings
	app.state.store = store
	app.state.geocoder = geocoder
	app.state.status_store = status_store
	app.state.registry = registry

	_register_error_handlers(app)

	# Routers; the page router's catch-all must come last
	app.include_router(upload_router)
	app.include_router(sessions_router)
	app.include_router(pages_router)

	logger.info("Static dir: {} (exists={})", settings.static_dir, settings.static_dir.exists())
	return app


if __name__ == "__main__":
	# Local dev server: uvicorn memorymap.main:create_app --factory --reload
	import uvicorn

	s = Settings.from_env()
	uvicorn.run("memorymap.main:create_app", factory=True, host=s.host, port=s.port, reload=True)
