import requests

from memorymap.services.geocoding import Geocoder, format_address


class FakeResponse:
	def __init__(self, payload, status_code=200):
		self.payload = payload
		self.status_code = status_code

	def raise_for_status(self):
		if self.status_code >= 400:
			raise requests.HTTPError(f"{self.status_code} error")

	def json(self):
		return self.payload


class FakeHTTP:
	def __init__(self, response=None, error=None):
		self.response = response
		self.error = error
		self.calls = []

	def get(self, url, params=None, headers=None):
		self.calls.append((url, params, headers))
		if self.error:
			raise self.error
		return self.response


def test_reverse_geocode_formats_address():
	http = FakeHTTP(FakeResponse({
		"display_name": "long name",
		"address": {"country": "대한민국", "city": "서울특별시", "borough": "중구", "suburb": "태평로1가", "town": "ignored"},
	}))
	geocoder = Geocoder(session=http)
	assert geocoder.reverse_geocode(37.5665, 126.978) == "대한민국, 서울특별시, 중구, 태평로1가"
	url, params, headers = http.calls[0]
	assert params["addressdetails"] == 1
	assert params["zoom"] == 18
	assert headers["Accept-Language"].startswith("ko-KR")


def test_district_and_suburb_fallback_order():
	data = {"address": {"country": "A", "city": "B", "city_district": "C", "town": "T", "quarter": "Q", "road": "R"}}
	assert format_address(data) == "A, B, C, Q"
	data = {"address": {"country": "A", "city": "B", "town": "T", "road": "R"}}
	assert format_address(data) == "A, B, T, R"


def test_reverse_geocode_uses_display_name_without_address():
	http = FakeHTTP(FakeResponse({"display_name": "Somewhere, Earth"}))
	assert Geocoder(session=http).reverse_geocode(1.0, 2.0) == "Somewhere, Earth"


def test_reverse_geocode_network_failure_returns_coordinates():
	http = FakeHTTP(error=requests.ConnectionError("offline"))
	assert Geocoder(session=http).reverse_geocode(37.5665, 126.9780) == "37.566500, 126.978000"


def test_reverse_geocode_http_error_returns_coordinates():
	http = FakeHTTP(FakeResponse({}, status_code=503))
	assert Geocoder(session=http).reverse_geocode(-1.5, 2.25) == "-1.500000, 2.250000"


def test_search_places():
	http = FakeHTTP(FakeResponse([
		{"display_name": "서울특별시청", "lat": "37.5663", "lon": "126.9779"},
		{"display_name": "no coordinates"},
	]))
	results = Geocoder(session=http).search_places(" 서울시청 ")
	assert [r.display_name for r in results] == ["서울특별시청"]
	assert results[0].lat == "37.5663"
	assert http.calls[0][1]["q"] == "서울시청"
	assert http.calls[0][1]["limit"] == 5


def test_search_places_blank_query_makes_no_request():
	http = FakeHTTP(error=AssertionError("should not be called"))
	assert Geocoder(session=http).search_places("   ") == []
	assert http.calls == []


def test_search_places_failure_returns_empty():
	http = FakeHTTP(error=requests.Timeout("slow"))
	assert Geocoder(session=http).search_places("부산역") == []
