from __future__ import annotations

import io

from loguru import logger
from PIL import ExifTags, Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from memorymap.models import UploadedFile

# Lets Pillow decode HEIC/HEIF for EXIF reading, validation and the canvas fallback.
register_heif_opener()


def open_image(file: UploadedFile) -> Image.Image:
	return Image.open(io.BytesIO(file.data))


def apply_exif_orientation(img: Image.Image, exif) -> Image.Image:
	orientation = None
	if exif:
		tmp = {}
		for tag_id, value in exif.items():
			tag = ExifTags.TAGS.get(tag_id, tag_id)
			tmp[str(tag)] = value
		orientation = tmp.get("Orientation")
	if orientation is None:
		return img
	try:
		o = int(orientation)
	except (TypeError, ValueError):
		return img
	if o == 2:
		return img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
	if o == 3:
		return img.rotate(180, expand=True)
	if o == 4:
		return img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
	if o == 5:
		return img.transpose(Image.Transpose.FLIP_LEFT_RIGHT).rotate(90, expand=True)
	if o == 6:
		return img.rotate(270, expand=True)
	if o == 7:
		return img.transpose(Image.Transpose.FLIP_LEFT_RIGHT).rotate(270, expand=True)
	if o == 8:
		return img.rotate(90, expand=True)
	return img


def validate_image(file: UploadedFile) -> bool:
	"""True if the file is non-empty, declared as an image and decodes to a non-zero size."""
	if file.size == 0:
		logger.warning("Image validation failed, empty file: {}", file.name)
		return False
	if not (file.content_type or "").startswith("image/"):
		logger.warning("Image validation failed, content type {!r}: {}", file.content_type, file.name)
		return False
	try:
		with open_image(file) as img:
			img.load()
			width, height = img.size
	except (UnidentifiedImageError, OSError, ValueError) as e:
		logger.warning("Image validation failed, cannot decode {}: {}", file.name, e)
		return False
	if width == 0 or height == 0:
		logger.warning("Image validation failed, size {}x{}: {}", width, height, file.name)
		return False
	logger.debug("Image validated: {} {}x{}", file.name, width, height)
	return True
