from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

from loguru import logger
from PIL import Image

from memorymap.models import UploadedFile
from memorymap.services.image_utils import apply_exif_orientation, open_image

MAX_PREVIEW_WIDTH = 512


class PreviewHandle:
	"""A preview JPEG on disk. Must be released; releasing twice is a no-op."""

	def __init__(self, path: Path):
		self.path = path
		self.released = False

	def release(self) -> None:
		if self.released:
			return
		self.released = True
		self.path.unlink(missing_ok=True)
		logger.debug("Preview released: {}", self.path)

	def __enter__(self) -> "PreviewHandle":
		return self

	def __exit__(self, *exc) -> None:
		self.release()


def generate_preview(file: UploadedFile, preview_dir: Path) -> PreviewHandle:
	preview_dir.mkdir(parents=True, exist_ok=True)
	with open_image(file) as img:
		img = apply_exif_orientation(img, img.getexif())
		if img.mode != "RGB":
			img = img.convert("RGB")
		if img.width > MAX_PREVIEW_WIDTH:
			r = MAX_PREVIEW_WIDTH / float(img.width)
			img = img.resize((int(img.width * r), max(1, int(img.height * r))), Image.Resampling.LANCZOS)
		out_path = preview_dir / f"{uuid.uuid4().hex}.jpg"
		img.save(out_path, format="JPEG", quality=85, optimize=True)
	return PreviewHandle(out_path)


def release_preview(handle: Optional[PreviewHandle]) -> None:
	if handle is not None:
		handle.release()
