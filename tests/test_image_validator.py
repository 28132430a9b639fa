"""Tests for upload validation and quality metrics."""
import io

import pytest
from PIL import Image

from models.raw_image import RawImage
from services.errors import ImageValidationError
from utils.image_validator import assess_quality, validate_upload


def _error_type(excinfo):
    return excinfo.value.details['error_type']


def test_valid_png(png_bytes):
    image = validate_upload(png_bytes, 'image/png')

    assert image.format == 'PNG'
    assert image.mime_type == 'image/png'
    assert (image.width, image.height) == (600, 900)
    assert image.data is png_bytes


def test_mime_type_is_optional(jpeg_bytes):
    assert validate_upload(jpeg_bytes).mime_type == 'image/jpeg'


def test_jpg_alias_is_accepted(jpeg_bytes):
    assert validate_upload(jpeg_bytes, 'image/jpg').format == 'JPEG'


def test_empty_upload():
    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(b'', 'image/png')
    assert _error_type(excinfo) == 'empty'


def test_too_large(png_bytes):
    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(png_bytes, 'image/png', max_bytes=100)
    assert _error_type(excinfo) == 'too_large'
    assert excinfo.value.details['max_bytes'] == 100


def test_declared_type_not_allowed(png_bytes):
    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(png_bytes, 'application/pdf')
    assert _error_type(excinfo) == 'unsupported_type'


def test_content_type_not_allowed():
    buffer = io.BytesIO()
    Image.new('RGB', (20, 20)).save(buffer, format='GIF')

    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(buffer.getvalue())
    assert _error_type(excinfo) == 'unsupported_type'


def test_declared_type_mismatch(png_bytes):
    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(png_bytes, 'image/jpeg')
    assert _error_type(excinfo) == 'mime_mismatch'


def test_corrupt_image():
    with pytest.raises(ImageValidationError) as excinfo:
        validate_upload(b'definitely not an image', 'image/png')
    assert _error_type(excinfo) == 'corrupt_image'


def test_quality_of_blank_image_is_flagged():
    buffer = io.BytesIO()
    Image.new('RGB', (400, 600), (128, 128, 128)).save(buffer, format='PNG')
    quality = assess_quality(RawImage.from_bytes(buffer.getvalue()))

    assert quality['is_blurry'] is True
    assert quality['is_low_contrast'] is True
    assert quality['is_dark'] is False
    assert quality['contrast'] == 0.0
    assert len(quality['warnings']) == 2


def test_quality_of_dark_image():
    buffer = io.BytesIO()
    Image.new('RGB', (400, 600), (5, 5, 5)).save(buffer, format='PNG')
    quality = assess_quality(RawImage.from_bytes(buffer.getvalue()))

    assert quality['is_dark'] is True
    assert any('too dark' in w for w in quality['warnings'])


def test_quality_of_text_image(png_bytes):
    quality = assess_quality(RawImage.from_bytes(png_bytes))

    assert quality['width'] == 600
    assert quality['is_blurry'] is False
    assert quality['brightness'] > 200
    assert quality['is_washed_out'] is True
