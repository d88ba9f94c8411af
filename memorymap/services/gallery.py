from __future__ import annotations

import html
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode, urlparse

import folium
from branca.element import Element
from folium.plugins import MarkerCluster

from memorymap.models import ImageRecord, LocationGroup

DEFAULT_CENTER = (37.5665, 126.9780)
DEFAULT_ZOOM = 12
FOCUS_ZOOM = 15
MARKER_ICON_SIZE = (40, 40)

NO_LOCATION = "위치 정보 없음"
NO_DATE = "날짜 정보 없음"

_TIMESTAMP_FORMATS = ("%Y:%m:%d %H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S")

# Leaflet.markercluster icon showing the member count
CLUSTER_ICON_JS = """
function(cluster) {
	return L.divIcon({
		html: '<div class="mm-cluster">' + cluster.getChildCount() + '</div>',
		className: 'mm-cluster-icon',
		iconSize: L.point(40, 40)
	});
}
"""

PAGE_CSS = """
<style>
	.mm-cluster { width: 40px; height: 40px; border-radius: 50%; background: #FF69B4; opacity: .9;
		border: 2px solid #fff; color: #fff; font: bold 13px/36px sans-serif; text-align: center; }
	.mm-popup { width: 260px; }
	.mm-popup img { width: 100%; max-height: 300px; object-fit: contain; border-radius: 8px; background: #f5f5f5; }
	.mm-popup .mm-name { font-weight: 600; font-size: 16px; margin: 8px 0; word-break: break-word; }
	.mm-popup .mm-location { font-size: 14px; color: #666; margin-bottom: 4px; }
	.mm-popup .mm-date { font-size: 13px; color: #999; }
	.mm-pager { text-align: center; margin-top: 8px; }
	.mm-pager button { width: 10px; height: 10px; border-radius: 50%; border: none; background: #ccc; padding: 0; margin: 0 3px; cursor: pointer; }
	.mm-list { position: fixed; left: 0; right: 0; bottom: 0; z-index: 1000; list-style: none; margin: 0; padding: 8px 16px;
		max-height: 30vh; overflow-y: auto; background: #fff; border-radius: 16px 16px 0 0; font-family: sans-serif; }
	.mm-list li { padding: 8px 0; border-bottom: 1px solid #eee; }
	.mm-list a { display: flex; gap: 12px; color: inherit; text-decoration: none; }
	.mm-list img { width: 56px; height: 56px; object-fit: cover; border-radius: 8px; }
</style>
"""


def parse_coordinate(text: Optional[str]) -> Optional[float]:
	if text is None:
		return None
	try:
		value = float(str(text).strip())
	except ValueError:
		return None
	return value if math.isfinite(value) else None


def valid_records(records: Iterable[ImageRecord]) -> List[ImageRecord]:
	"""Records whose latitude and longitude both parse as numbers."""
	return [r for r in records if parse_coordinate(r.latitude) is not None and parse_coordinate(r.longitude) is not None]


def _number_text(value: float) -> str:
	# same text as a JS number, e.g. 127.0 -> "127"
	return str(int(value)) if value.is_integer() and abs(value) < 1e16 else repr(value)


def location_key(record: ImageRecord) -> str:
	"""Key of the parsed coordinates, so "37.5" and "37.5000" are one location."""
	lat, lon = parse_coordinate(record.latitude), parse_coordinate(record.longitude)
	return f"{_number_text(lat)},{_number_text(lon)}"


def group_by_location(records: Iterable[ImageRecord]) -> List[LocationGroup]:
	groups: Dict[str, LocationGroup] = {}
	for record in valid_records(records):
		key = location_key(record)
		group = groups.get(key)
		if group is None:
			group = LocationGroup(
				key=key,
				latitude=parse_coordinate(record.latitude),
				longitude=parse_coordinate(record.longitude),
			)
			groups[key] = group
		group.records.append(record)
	return list(groups.values())


def _timestamp_key(record: ImageRecord) -> Tuple[int, datetime, str]:
	text = (record.date_time or "").strip()
	if not text:
		return (0, datetime.min, "")
	for fmt in _TIMESTAMP_FORMATS:
		try:
			return (2, datetime.strptime(text, fmt), text)
		except ValueError:
			continue
	try:
		return (2, datetime.fromisoformat(text).replace(tzinfo=None), text)
	except ValueError:
		return (1, datetime.min, text)


def sort_by_timestamp(records: Iterable[ImageRecord]) -> List[ImageRecord]:
	"""Newest first; unparseable timestamps after parseable ones, missing ones last."""
	return sorted(records, key=_timestamp_key, reverse=True)


def _escape(text: str) -> str:
	"""HTML-escape text that also ends up inside folium's JS template literals."""
	return html.escape(text, quote=True).replace("`", "&#96;").replace("$", "&#36;").replace("\\", "&#92;")


def _is_web_url(url: Optional[str]) -> bool:
	return bool(url) and urlparse(url).scheme in ("http", "https")


def _panel_html(record: ImageRecord, visible: bool) -> str:
	return (
		f'<div class="mm-panel" style="display: {"block" if visible else "none"}">'
		f'<img src="{_escape(record.image_url)}" alt="{_escape(record.image_name)}">'
		f'<div class="mm-name">{_escape(record.image_name)}</div>'
		f'<div class="mm-location">{_escape(record.location or NO_LOCATION)}</div>'
		f'<div class="mm-date">{_escape(record.date_time or NO_DATE)}</div>'
		"</div>"
	)


def popup_html(group: LocationGroup) -> str:
	"""One panel per record of the group; dots page between them."""
	panels = "".join(_panel_html(r, i == 0) for i, r in enumerate(group.records))
	pager = ""
	if len(group.records) > 1:
		dots = "".join(
			f'<button onclick="var p=this.closest(\'.mm-popup\').querySelectorAll(\'.mm-panel\');'
			f'p.forEach(function(e,j){{e.style.display=j=={i}?\'block\':\'none\';}});"></button>'
			for i in range(len(group.records))
		)
		pager = f'<div class="mm-pager">{dots}</div>'
	return f'<div class="mm-popup">{panels}{pager}</div>'


def focus_url(record: ImageRecord) -> str:
	return "/?" + urlencode({"lat": record.latitude, "lon": record.longitude})


def list_html(records: List[ImageRecord]) -> str:
	items = []
	for r in records:
		items.append(
			f'<li><a href="{_escape(focus_url(r))}">'
			f'<img src="{_escape(r.image_url)}" alt="">'
			f'<div><div class="mm-name">{_escape(r.image_name)}</div>'
			f'<div>{_escape(r.location or NO_LOCATION)}</div>'
			f'<div>{_escape(r.date_time or NO_DATE)}</div></div></a></li>'
		)
	return f'<ul class="mm-list">{"".join(items)}</ul>'


def map_view(focus: Optional[Tuple[float, float]]) -> Tuple[Tuple[float, float], int]:
	"""Center and zoom: the focused record zoomed in, otherwise the default overview."""
	if focus is None:
		return DEFAULT_CENTER, DEFAULT_ZOOM
	return focus, FOCUS_ZOOM


def build_map(
	records: Iterable[ImageRecord],
	focus: Optional[Tuple[float, float]] = None,
	tiles: str = "OpenStreetMap",
	attr: Optional[str] = None,
) -> folium.Map:
	records = list(records)
	center, zoom = map_view(focus)
	m = folium.Map(location=list(center), zoom_start=zoom, tiles=tiles, attr=attr)

	cluster = MarkerCluster(icon_create_function=CLUSTER_ICON_JS, options={"showCoverageOnHover": False})
	cluster.add_to(m)
	for group in group_by_location(records):
		first = group.first
		icon = folium.CustomIcon(first.image_url, icon_size=MARKER_ICON_SIZE) if _is_web_url(first.image_url) else None
		folium.Marker(
			location=[group.latitude, group.longitude],
			tooltip=folium.Tooltip(_escape(first.image_name)),
			icon=icon,
			popup=folium.Popup(popup_html(group), max_width=300),
		).add_to(cluster)

	root = m.get_root()
	root.header.add_child(Element(PAGE_CSS))
	# passed as a variable so record text is never parsed as template syntax
	photo_list = Element("{{ this.body }}")
	photo_list.body = list_html(sort_by_timestamp(valid_records(records)))
	root.html.add_child(photo_list)
	return m


def render_map(
	records: Iterable[ImageRecord],
	focus: Optional[Tuple[float, float]] = None,
	tiles: str = "OpenStreetMap",
	attr: Optional[str] = None,
) -> str:
	return build_map(records, focus=focus, tiles=tiles, attr=attr).get_root().render()
