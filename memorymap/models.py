from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class UploadedFile:
	"""An uploaded image held in memory."""

	name: str
	content_type: str
	data: bytes

	@property
	def size(self) -> int:
		return len(self.data)


@dataclass
class ExtractedMetadata:
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	captured_at: Optional[str] = None
	tags: Dict[str, Any] = field(default_factory=dict)

	@property
	def has_coordinates(self) -> bool:
		return self.latitude is not None and self.longitude is not None


@dataclass
class PlaceResult:
	display_name: str
	lat: str
	lon: str


@dataclass
class ImageRecord:
	"""A row of the image table.

	Coordinates are kept as the decimal-degree text they were stored with.
	"""

	image_name: str
	image_url: str
	original_file_name: str
	date_time: Optional[str] = None
	location: Optional[str] = None
	latitude: Optional[str] = None
	longitude: Optional[str] = None
	file_size: Optional[int] = None
	file_type: Optional[str] = None
	created_at: Optional[str] = None
	image_uploaded_at: Optional[str] = None
	id: Optional[Any] = None

	@classmethod
	def from_row(cls, row: Dict[str, Any]) -> "ImageRecord":
		known = {k: row.get(k) for k in cls.__dataclass_fields__ if k in row}
		known["image_name"] = row.get("image_name") or row.get("original_file_name") or ""
		known["image_url"] = row.get("image_url") or ""
		known["original_file_name"] = row.get("original_file_name") or ""
		for coord in ("latitude", "longitude"):
			if known.get(coord) is not None:
				known[coord] = str(known[coord])
		return cls(**known)

	def to_row(self) -> Dict[str, Any]:
		row = asdict(self)
		# assigned by the backend on insert
		row.pop("id")
		return row

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class LocationGroup:
	key: str
	latitude: float
	longitude: float
	records: List[ImageRecord] = field(default_factory=list)

	@property
	def first(self) -> ImageRecord:
		return self.records[0]
