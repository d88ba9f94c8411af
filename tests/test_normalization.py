import io

import pytest
from PIL import Image

from memorymap.models import UploadedFile
from memorymap.services import normalization
from memorymap.services.image_utils import validate_image
from memorymap.services.normalization import flatten_on_white, is_heic, jpeg_name, transcode


def test_validate_image_accepts_jpeg(plain_jpeg):
	assert validate_image(plain_jpeg)


def test_validate_image_rejects_empty_file():
	assert not validate_image(UploadedFile("empty.jpg", "image/jpeg", b""))


def test_validate_image_rejects_non_image_type(plain_jpeg):
	assert not validate_image(UploadedFile("x.jpg", "application/octet-stream", plain_jpeg.data))


def test_validate_image_rejects_undecodable_bytes():
	assert not validate_image(UploadedFile("x.jpg", "image/jpeg", b"\xff\xd8garbage"))


def test_jpeg_name():
	assert jpeg_name("IMG_0001.HEIC") == "IMG_0001.jpg"
	assert jpeg_name("photo.heif") == "photo.jpg"
	assert jpeg_name("blob") == "blob.jpg"


def test_is_heic_false_for_jpeg(plain_jpeg):
	assert not is_heic(plain_jpeg)


def test_is_heic_true_for_heic(heic_file):
	assert is_heic(heic_file)


def test_is_heic_falls_back_to_extension(monkeypatch):
	def broken_sniff(data):
		raise RuntimeError("sniffer crashed")

	monkeypatch.setattr(normalization.pillow_heif, "is_supported", broken_sniff)
	assert is_heic(UploadedFile("IMG_1.HeIc", "application/octet-stream", b"\x00" * 16))
	assert not is_heic(UploadedFile("IMG_1.png", "image/png", b"\x00" * 16))


def test_flatten_on_white_removes_transparency():
	img = Image.new("RGBA", (4, 3), (255, 0, 0, 0))
	flat = flatten_on_white(img)
	assert flat.mode == "RGB"
	assert flat.size == (4, 3)
	assert flat.getpixel((0, 0)) == (255, 255, 255)


def test_transcode_heic_to_jpeg(heic_file):
	converted = transcode(heic_file)
	assert converted is not None
	assert converted.content_type == "image/jpeg"
	assert converted.name == "IMG_0001.jpg"
	with Image.open(io.BytesIO(converted.data)) as img:
		assert img.format == "JPEG"
		assert img.size == (64, 64)


def test_transcode_falls_back_to_canvas(heic_file, monkeypatch):
	def broken(file):
		raise RuntimeError("libheif failure")

	monkeypatch.setattr(normalization, "transcode_with_libheif", broken)
	converted = transcode(heic_file)
	assert converted is not None
	assert converted.content_type == "image/jpeg"


def test_transcode_rejects_invalid_primary_output(heic_file, monkeypatch):
	monkeypatch.setattr(
		normalization, "transcode_with_libheif", lambda f: UploadedFile("x.jpg", "image/jpeg", b"")
	)
	calls = []
	original = normalization.transcode_with_canvas

	def spy(file):
		calls.append(file.name)
		return original(file)

	monkeypatch.setattr(normalization, "transcode_with_canvas", spy)
	assert transcode(heic_file) is not None
	assert calls == ["IMG_0001.HEIC"]


def test_transcode_returns_none_when_both_strategies_fail():
	garbage = UploadedFile("broken.heic", "image/heic", b"ftypheic-but-not-really")
	assert transcode(garbage) is None
