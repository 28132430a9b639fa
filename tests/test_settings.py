"""Tests for pipeline settings and logging setup."""
import json
import logging

import pytest

from config.settings import ConfigError, ReceiptOCRSettings
from utils.logging_config import JsonFormatter, setup_logging


@pytest.fixture
def clean_env(monkeypatch):
    for key in ('OCR_ENGINE', 'OCR_POOL_SIZE', 'OCR_TIMEOUT', 'OCR_RETRIES', 'MAX_UPLOAD_BYTES',
                'ALLOWED_MIME_TYPES', 'MIN_ITEM_CONFIDENCE', 'PREPROCESS_DEFAULT', 'OCR_USE_FALLBACK',
                'OCR_PSM', 'OCR_OEM'):
        monkeypatch.delenv(key, raising=False)


def test_defaults(clean_env):
    settings = ReceiptOCRSettings()
    settings.validate()

    assert settings.ocr_engine == 'tesseract'
    assert settings.ocr_pool_size == 2
    assert settings.max_upload_bytes == 10 * 1024 * 1024
    assert settings.allowed_mime_types == ['image/jpeg', 'image/png', 'image/webp']
    assert settings.min_item_confidence == 0.2
    assert settings.preprocess_default == 'off'
    assert settings.ocr_use_fallback is False
    assert settings.tesseract_config == '--psm 6 --oem 3'


def test_env_overrides(clean_env, monkeypatch):
    monkeypatch.setenv('OCR_ENGINE', 'GOOGLE_VISION')
    monkeypatch.setenv('OCR_POOL_SIZE', '4')
    monkeypatch.setenv('ALLOWED_MIME_TYPES', 'image/png, IMAGE/JPEG')
    monkeypatch.setenv('OCR_USE_FALLBACK', 'true')
    monkeypatch.setenv('OCR_PSM', '4')

    settings = ReceiptOCRSettings()

    assert settings.ocr_engine == 'google_vision'
    assert settings.ocr_pool_size == 4
    assert settings.allowed_mime_types == ['image/png', 'image/jpeg']
    assert settings.ocr_use_fallback is True
    assert settings.tesseract_config == '--psm 4 --oem 3'


@pytest.mark.parametrize("overrides", [
    {'ocr_engine': 'easyocr'},
    {'ocr_timeout': 0},
    {'ocr_pool_size': 5},
    {'ocr_pool_size': 0},
    {'ocr_retries': -1},
    {'max_upload_bytes': 0},
    {'allowed_mime_types': []},
    {'allowed_mime_types': ['application/pdf']},
    {'min_item_confidence': 1.5},
    {'review_confidence': -0.1},
    {'preprocess_default': 'extreme'},
])
def test_invalid_settings(clean_env, overrides):
    with pytest.raises(ConfigError):
        ReceiptOCRSettings.from_dict(overrides).validate()


def test_from_dict_rejects_unknown_keys(clean_env):
    with pytest.raises(ConfigError):
        ReceiptOCRSettings.from_dict({'ocr_speed': 'fast'})


def test_to_dict_round_trip(clean_env):
    settings = ReceiptOCRSettings.from_dict({'ocr_retries': 3, 'preprocess_default': 'auto'})
    copy = ReceiptOCRSettings.from_dict(settings.to_dict())

    assert copy.to_dict() == settings.to_dict()
    assert copy.ocr_retries == 3


def test_setup_logging_writes_files(tmp_path):
    log_dir = tmp_path / 'logs'
    setup_logging(log_dir=str(log_dir), debug_mode=True, log_to_file=True)

    names = sorted(p.name.split('_')[0] for p in log_dir.iterdir())
    assert names == ['debug', 'error', 'info', 'pipeline']


def test_setup_logging_without_debug_skips_debug_file(tmp_path):
    log_dir = tmp_path / 'logs'
    setup_logging(log_dir=str(log_dir), debug_mode=False, log_to_file=True)

    names = sorted(p.name.split('_')[0] for p in log_dir.iterdir())
    assert names == ['error', 'info', 'pipeline']


def test_json_formatter_includes_context():
    record = logging.LogRecord('services.receipt_service', logging.INFO, __file__, 1,
                               'Stage parse finished', None, None)
    record.data = {'stage': 'parse', 'items': 22}

    entry = json.loads(JsonFormatter().format(record))

    assert entry['message'] == 'Stage parse finished'
    assert entry['data'] == {'stage': 'parse', 'items': 22}
