from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

import piexif
from loguru import logger
from PIL import ExifTags

from memorymap.models import ExtractedMetadata, UploadedFile
from memorymap.services.image_utils import open_image

# First present wins. DateTimeDigitized is what most tools call CreateDate.
TIMESTAMP_TAGS = ("DateTimeOriginal", "DateTime", "DateTimeDigitized")

_JPEG_MAGIC = b"\xff\xd8"
_TIFF_MAGICS = (b"II*\x00", b"MM\x00*")


def _rational_to_float(x: Any) -> Optional[float]:
	if x is None:
		return None
	if isinstance(x, tuple) and len(x) == 2:
		num, den = x
		if not den:
			return None
		return float(num) / float(den)
	try:
		return float(x)
	except (TypeError, ValueError):
		return None


def _bytes_to_str(v: Any) -> Optional[str]:
	if v is None:
		return None
	if isinstance(v, bytes):
		v = v.decode("utf-8", errors="ignore")
	s = str(v).strip("\x00").strip()
	return s or None


def dms_to_degrees(dms: Any, ref: Any = None) -> Optional[float]:
	"""Convert a degree/minute/second triple to signed decimal degrees.

	A bare number is read as whole degrees. South and West references negate the result.
	"""
	d, m, s = (_rational_to_float(p) for p in _dms_parts(dms))
	if d is None:
		return None
	deg = d + (m or 0.0) / 60.0 + (s or 0.0) / 3600.0
	if _bytes_to_str(ref) in ("S", "W"):
		deg = -deg
	return deg


def _dms_parts(dms: Any) -> Sequence[Any]:
	if isinstance(dms, tuple) and len(dms) == 2 and all(isinstance(p, int) for p in dms):
		# a lone piexif rational (num, den)
		return [dms, 0, 0]
	if isinstance(dms, (list, tuple)):
		return (list(dms) + [0, 0])[:3]
	return [dms, 0, 0]


def decimal_to_dms(value: float, is_latitude: bool = True) -> Tuple[Tuple[int, int, float], str]:
	"""Split signed decimal degrees into ((d, m, s), hemisphere reference)."""
	if is_latitude:
		ref = "S" if value < 0 else "N"
	else:
		ref = "W" if value < 0 else "E"
	v = abs(value)
	d = int(v)
	rem = (v - d) * 60.0
	m = int(rem)
	s = (rem - m) * 60.0
	return (d, m, s), ref


def _pick_timestamp(tags: Dict[str, Any]) -> Optional[str]:
	for name in TIMESTAMP_TAGS:
		ts = _bytes_to_str(tags.get(name))
		if ts:
			return ts
	return None


class PillowExifStrategy:
	"""Primary strategy: Pillow's EXIF reader, base/Exif/GPS IFDs merged into one flat mapping."""

	name = "pillow"

	def extract(self, file: UploadedFile) -> ExtractedMetadata:
		with open_image(file) as img:
			exif = img.getexif()
			tags: Dict[str, Any] = {}
			for tag_id, value in exif.items():
				tags[str(ExifTags.TAGS.get(tag_id, tag_id))] = value
			for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
				tags[str(ExifTags.TAGS.get(tag_id, tag_id))] = value
			gps = {str(ExifTags.GPSTAGS.get(k, k)): v for k, v in exif.get_ifd(ExifTags.IFD.GPSInfo).items()}
		# IFD pointers, not data
		tags.pop("ExifOffset", None)
		tags.pop("GPSInfo", None)
		tags.update(gps)

		lat = lon = None
		if "GPSLatitude" in gps and "GPSLongitude" in gps:
			lat = dms_to_degrees(gps["GPSLatitude"], gps.get("GPSLatitudeRef"))
			lon = dms_to_degrees(gps["GPSLongitude"], gps.get("GPSLongitudeRef"))
		return ExtractedMetadata(latitude=lat, longitude=lon, captured_at=_pick_timestamp(tags), tags=tags)


class PiexifStrategy:
	"""Fallback strategy: piexif over the raw EXIF block."""

	name = "piexif"

	def _exif_block(self, file: UploadedFile) -> bytes:
		head = file.data[:4]
		if head[:2] == _JPEG_MAGIC or head in _TIFF_MAGICS:
			return file.data
		# HEIC, PNG, WebP: let Pillow locate the EXIF block
		with open_image(file) as img:
			block = img.info.get("exif")
		if not block:
			raise ValueError(f"no EXIF block in {file.name}")
		return block

	def extract(self, file: UploadedFile) -> ExtractedMetadata:
		ex = piexif.load(self._exif_block(file))
		tags: Dict[str, Any] = {}
		for ifd in ("0th", "Exif", "GPS"):
			for tag_id, value in (ex.get(ifd) or {}).items():
				name = piexif.TAGS.get(ifd, {}).get(tag_id, {}).get("name", str(tag_id))
				tags[name] = value

		gps = ex.get("GPS") or {}
		lat = lon = None
		if piexif.GPSIFD.GPSLatitude in gps and piexif.GPSIFD.GPSLongitude in gps:
			lat = dms_to_degrees(gps[piexif.GPSIFD.GPSLatitude], gps.get(piexif.GPSIFD.GPSLatitudeRef))
			lon = dms_to_degrees(gps[piexif.GPSIFD.GPSLongitude], gps.get(piexif.GPSIFD.GPSLongitudeRef))
		return ExtractedMetadata(latitude=lat, longitude=lon, captured_at=_pick_timestamp(tags), tags=tags)


class MetadataExtractor:
	"""Runs the primary strategy and falls back to the second only when coordinates are missing."""

	def __init__(self, primary=None, fallback=None):
		self.primary = primary or PillowExifStrategy()
		self.fallback = fallback or PiexifStrategy()

	def extract(self, file: UploadedFile) -> Optional[ExtractedMetadata]:
		primary_result: Optional[ExtractedMetadata] = None
		try:
			primary_result = self.primary.extract(file)
		except Exception as e:
			logger.warning("{} metadata extraction failed for {}: {}", self.primary.name, file.name, e)

		if primary_result is not None and primary_result.has_coordinates:
			logger.info("Metadata extracted by {}: {}", self.primary.name, file.name)
			return primary_result

		try:
			result = self.fallback.extract(file)
		except Exception as e:
			logger.warning("{} metadata extraction failed for {}: {}", self.fallback.name, file.name, e)
			return primary_result

		if primary_result is not None:
			result.captured_at = result.captured_at or primary_result.captured_at
			result.tags = {**primary_result.tags, **result.tags}
		logger.info("Metadata extracted by {}: {} (coordinates={})", self.fallback.name, file.name, result.has_coordinates)
		return result

