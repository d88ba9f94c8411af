from __future__ import annotations

import io
import re
from typing import Optional

import numpy as np
import pillow_heif
from loguru import logger
from PIL import Image

from memorymap.models import UploadedFile
from memorymap.services.image_utils import apply_exif_orientation, open_image, validate_image

JPEG_QUALITY = 92
HEIC_EXTENSIONS = (".heic", ".heif")
_HEIC_SUFFIX = re.compile(r"\.(heic|heif)$", re.IGNORECASE)


def is_heic(file: UploadedFile) -> bool:
	"""Sniff the container; fall back to the file extension when sniffing fails."""
	try:
		return bool(pillow_heif.is_supported(file.data))
	except Exception as e:
		logger.warning("HEIC sniffing failed for {}: {}", file.name, e)
		return file.name.lower().endswith(HEIC_EXTENSIONS)


def jpeg_name(name: str) -> str:
	if _HEIC_SUFFIX.search(name):
		return _HEIC_SUFFIX.sub(".jpg", name)
	return name + ".jpg"


def _encode_jpeg(img: Image.Image, name: str) -> UploadedFile:
	buf = io.BytesIO()
	img.save(buf, format="JPEG", quality=JPEG_QUALITY)
	return UploadedFile(name=jpeg_name(name), content_type="image/jpeg", data=buf.getvalue())


def transcode_with_libheif(file: UploadedFile) -> UploadedFile:
	heif_file = pillow_heif.open_heif(io.BytesIO(file.data))
	img = heif_file.to_pillow()
	if img.mode != "RGB":
		img = img.convert("RGB")
	return _encode_jpeg(img, file.name)


def flatten_on_white(img: Image.Image) -> Image.Image:
	"""Composite onto an opaque white canvas of the same size, dropping any alpha."""
	rgba = np.asarray(img.convert("RGBA")).astype(np.float32) / 255.0
	alpha = rgba[..., 3:4]
	rgb = rgba[..., :3] * alpha + (1.0 - alpha)
	u8 = (np.clip(rgb, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
	return Image.fromarray(u8)


def transcode_with_canvas(file: UploadedFile) -> UploadedFile:
	with open_image(file) as img:
		img = apply_exif_orientation(img, img.getexif())
		canvas = flatten_on_white(img)
	return _encode_jpeg(canvas, file.name)


def transcode(file: UploadedFile) -> Optional[UploadedFile]:
	"""Convert a HEIC/HEIF upload to JPEG. Returns None if both strategies fail."""
	logger.info("HEIC conversion started: {} ({} bytes)", file.name, file.size)
	try:
		converted = transcode_with_libheif(file)
		if validate_image(converted):
			logger.info("HEIC -> JPEG via libheif: {} ({} bytes)", converted.name, converted.size)
			return converted
		logger.warning("libheif output failed validation for {}", file.name)
	except Exception as e:
		logger.warning("libheif conversion failed for {}: {}", file.name, e)

	try:
		converted = transcode_with_canvas(file)
	except Exception as e:
		logger.error("Canvas conversion failed for {}: {}", file.name, e)
		return None
	if not validate_image(converted):
		logger.error("Canvas output failed validation for {}", file.name)
		return None
	logger.info("HEIC -> JPEG via canvas: {} ({} bytes)", converted.name, converted.size)
	return converted
