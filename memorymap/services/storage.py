from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from memorymap.errors import StorageError
from memorymap.models import ImageRecord, UploadedFile


def _none_if_blank(value: Optional[str]) -> Optional[str]:
	if value is None:
		return None
	value = value.strip()
	return value or None


def _coordinate_pair(latitude: Optional[str], longitude: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
	"""Both coordinates as given, or neither unless both are valid decimal degrees."""
	lat = _none_if_blank(latitude)
	lon = _none_if_blank(longitude)
	if lat is None or lon is None:
		return None, None
	try:
		lat_f, lon_f = float(lat), float(lon)
	except ValueError:
		logger.warning("Dropping unparseable coordinates {!r}, {!r}", lat, lon)
		return None, None
	if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lon_f <= 180.0):
		logger.warning("Dropping out-of-range coordinates {}, {}", lat, lon)
		return None, None
	return lat, lon


class ImageStore:
	"""Supabase bucket + table holding uploaded images and their metadata."""

	def __init__(self, client: Any, bucket: str = "images", table: str = "image_info"):
		self.client = client
		self.bucket = bucket
		self.table = table

	@classmethod
	def from_settings(cls, settings) -> "ImageStore":
		from supabase import create_client

		client = create_client(settings.supabase_url, settings.supabase_key)
		return cls(client, bucket=settings.supabase_bucket, table=settings.supabase_table)

	def save(
		self,
		file: UploadedFile,
		name: Optional[str] = None,
		date: Optional[str] = None,
		location: Optional[str] = None,
		latitude: Optional[str] = None,
		longitude: Optional[str] = None,
	) -> ImageRecord:
		"""Upload the file to the bucket, then insert its metadata row."""
		object_path = f"images/{int(time.time() * 1000)}_{file.name}"
		bucket = self.client.storage.from_(self.bucket)
		try:
			bucket.upload(
				path=object_path,
				file=file.data,
				file_options={"content-type": file.content_type, "upsert": "false"},
			)
			image_url = bucket.get_public_url(object_path)
		except Exception as e:
			logger.error("Storage upload error for {}: {}", object_path, e)
			raise StorageError("Storage upload failed", str(e)) from e
		logger.info("Stored image {} -> {}", file.name, image_url)

		lat, lon = _coordinate_pair(latitude, longitude)
		now = datetime.now(timezone.utc).isoformat()
		record = ImageRecord(
			image_name=_none_if_blank(name) or file.name,
			image_url=image_url,
			original_file_name=file.name,
			date_time=_none_if_blank(date),
			location=_none_if_blank(location),
			latitude=lat,
			longitude=lon,
			file_size=file.size,
			file_type=file.content_type,
			created_at=now,
			image_uploaded_at=now,
		)
		try:
			response = self.client.table(self.table).insert([record.to_row()]).execute()
		except Exception as e:
			logger.error("DB insert error for {}: {}", file.name, e)
			raise StorageError("DB insert failed", str(e)) from e
		rows = getattr(response, "data", None) or []
		if rows and isinstance(rows[0], dict):
			record.id = rows[0].get("id")
		return record

	def list_images(self) -> List[ImageRecord]:
		"""All rows, newest capture time first."""
		try:
			response = (
				self.client.table(self.table)
				.select("*")
				.order("date_time", desc=True)
				.execute()
			)
		except Exception as e:
			logger.error("DB select error: {}", e)
			raise StorageError("DB select failed", str(e)) from e
		rows: List[Dict[str, Any]] = getattr(response, "data", None) or []
		logger.debug("Fetched {} image rows", len(rows))
		return [ImageRecord.from_row(row) for row in rows]
