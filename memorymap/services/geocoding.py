"""Reverse geocoding and place search against a Nominatim-compatible service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from memorymap.models import PlaceResult

ACCEPT_LANGUAGE = "ko-KR,ko;q=0.9,en;q=0.8"
SEARCH_LIMIT = 5


def format_coordinates(lat: float, lon: float) -> str:
	return f"{lat:.6f}, {lon:.6f}"


def _first(address: Dict[str, Any], *keys: str) -> Optional[str]:
	for key in keys:
		if address.get(key):
			return address[key]
	return None


def format_address(data: Dict[str, Any]) -> Optional[str]:
	"""`country, city, district, suburb` from a reverse lookup, or its display name."""
	address = data.get("address")
	if not address:
		return data.get("display_name")
	parts = [
		address.get("country"),
		address.get("city"),
		_first(address, "borough", "city_district", "town"),
		_first(address, "suburb", "quarter", "road"),
	]
	formatted = ", ".join(p for p in parts if p)
	return formatted or data.get("display_name")


class Geocoder:
	def __init__(
		self,
		reverse_url: str = "https://nominatim.openstreetmap.org/reverse",
		search_url: str = "https://nominatim.openstreetmap.org/search",
		user_agent: str = "MemoryMap/1.0",
		session: Optional[requests.Session] = None,
	):
		self.reverse_url = reverse_url
		self.search_url = search_url
		self.headers = {"Accept-Language": ACCEPT_LANGUAGE, "User-Agent": user_agent}
		self.http = session or requests.Session()

	def reverse_geocode(self, lat: float, lon: float) -> str:
		"""Human-readable place for the coordinates. Never raises."""
		params = {"format": "json", "lat": lat, "lon": lon, "zoom": 18, "addressdetails": 1}
		try:
			r = self.http.get(self.reverse_url, params=params, headers=self.headers)
			r.raise_for_status()
			data = r.json()
		except (requests.RequestException, ValueError) as e:
			logger.warning("Reverse geocoding failed for ({}, {}): {}", lat, lon, e)
			return format_coordinates(lat, lon)
		place = format_address(data) if isinstance(data, dict) else None
		if not place:
			logger.warning("Reverse geocoding returned no place for ({}, {})", lat, lon)
			return format_coordinates(lat, lon)
		logger.info("Reverse geocoded ({}, {}) -> {}", lat, lon, place)
		return place

	def search_places(self, query: str) -> List[PlaceResult]:
		if not query or not query.strip():
			return []
		params = {"format": "json", "q": query.strip(), "limit": SEARCH_LIMIT}
		try:
			r = self.http.get(self.search_url, params=params, headers=self.headers)
			r.raise_for_status()
			rows = r.json()
		except (requests.RequestException, ValueError) as e:
			logger.error("Place search failed for {!r}: {}", query, e)
			return []
		results = []
		for row in rows or []:
			if not isinstance(row, dict) or "lat" not in row or "lon" not in row:
				continue
			results.append(PlaceResult(display_name=row.get("display_name", ""), lat=str(row["lat"]), lon=str(row["lon"])))
		return results
