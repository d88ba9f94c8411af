from __future__ import annotations

import io
from typing import List, Optional

import piexif
import pytest
from PIL import Image

from memorymap.config import Settings
from memorymap.errors import StorageError
from memorymap.models import ImageRecord, PlaceResult, UploadedFile
from memorymap.services.metadata import decimal_to_dms

SEOUL = (37.5665, 126.9780)


def _rational(value: float, den: int = 10000):
	return (int(round(value * den)), den)


def _gps_ifd(lat: float, lon: float) -> dict:
	(lat_d, lat_m, lat_s), lat_ref = decimal_to_dms(lat, is_latitude=True)
	(lon_d, lon_m, lon_s), lon_ref = decimal_to_dms(lon, is_latitude=False)
	return {
		piexif.GPSIFD.GPSLatitudeRef: lat_ref.encode(),
		piexif.GPSIFD.GPSLatitude: ((lat_d, 1), (lat_m, 1), _rational(lat_s)),
		piexif.GPSIFD.GPSLongitudeRef: lon_ref.encode(),
		piexif.GPSIFD.GPSLongitude: ((lon_d, 1), (lon_m, 1), _rational(lon_s)),
	}


def make_jpeg(lat: Optional[float] = None, lon: Optional[float] = None, timestamp: Optional[str] = None, size=(64, 48)) -> bytes:
	img = Image.new("RGB", size, (200, 120, 40))
	exif = {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None}
	if timestamp:
		exif["Exif"][piexif.ExifIFD.DateTimeOriginal] = timestamp.encode()
	if lat is not None and lon is not None:
		exif["GPS"] = _gps_ifd(lat, lon)
	buf = io.BytesIO()
	img.save(buf, format="JPEG", exif=piexif.dump(exif))
	return buf.getvalue()


def make_heic(size=(64, 64)) -> bytes:
	import pillow_heif

	img = Image.new("RGB", size, (10, 120, 200))
	buf = io.BytesIO()
	try:
		pillow_heif.from_pillow(img).save(buf, quality=90)
	except (RuntimeError, ValueError, OSError) as e:
		pytest.skip(f"HEIC encoder unavailable: {e}")
	return buf.getvalue()


class FakeGeocoder:
	def __init__(self, place: str = "대한민국, 서울특별시, 중구, 태평로1가", results: Optional[List[PlaceResult]] = None):
		self.place = place
		self.results = results if results is not None else [
			PlaceResult(display_name="서울특별시청, 세종대로, 중구, 서울특별시", lat="37.5663", lon="126.9779"),
			PlaceResult(display_name="부산역, 중앙대로, 동구, 부산광역시", lat="35.1151", lon="129.0422"),
		]
		self.reverse_calls = []
		self.search_calls = []

	def reverse_geocode(self, lat: float, lon: float) -> str:
		self.reverse_calls.append((lat, lon))
		return self.place

	def search_places(self, query: str) -> List[PlaceResult]:
		self.search_calls.append(query)
		return list(self.results) if query.strip() else []


class FakeStore:
	def __init__(self, records: Optional[List[ImageRecord]] = None):
		self.records = list(records or [])
		self.saved = []
		self.fail_save = False
		self.fail_list = False

	def save(self, file: UploadedFile, name=None, date=None, location=None, latitude=None, longitude=None) -> ImageRecord:
		if self.fail_save:
			raise StorageError("Storage upload failed", "bucket unavailable")
		record = ImageRecord(
			image_name=name or file.name,
			image_url=f"https://cdn.example.test/images/{file.name}",
			original_file_name=file.name,
			date_time=date or None,
			location=location or None,
			latitude=latitude or None,
			longitude=longitude or None,
			file_size=file.size,
			file_type=file.content_type,
		)
		self.saved.append((file, record))
		self.records.append(record)
		return record

	def list_images(self) -> List[ImageRecord]:
		if self.fail_list:
			raise StorageError("DB select failed", "connection refused")
		return list(self.records)


@pytest.fixture
def gps_jpeg() -> UploadedFile:
	return UploadedFile("seoul.jpg", "image/jpeg", make_jpeg(*SEOUL, timestamp="2024:05:01 10:30:00"))


@pytest.fixture
def plain_jpeg() -> UploadedFile:
	return UploadedFile("plain.jpg", "image/jpeg", make_jpeg())


@pytest.fixture
def heic_file() -> UploadedFile:
	return UploadedFile("IMG_0001.HEIC", "image/heic", make_heic())


@pytest.fixture
def geocoder() -> FakeGeocoder:
	return FakeGeocoder()


@pytest.fixture
def store() -> FakeStore:
	return FakeStore()


@pytest.fixture
def settings(tmp_path) -> Settings:
	return Settings(data_dir=tmp_path / "data", static_dir=tmp_path / "dist", close_delay_s=0.0)
