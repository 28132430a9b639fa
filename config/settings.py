"""Configuration settings for the receipt OCR pipeline."""
import os
from typing import Optional, List

DEFAULT_ALLOWED_MIME_TYPES = 'image/jpeg,image/png,image/webp'
PREPROCESS_MODES = ('off', 'auto', 'quick', 'full')
OCR_ENGINES = ('tesseract', 'google_vision')


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""


def _env_bool(name: str, default: str = '0') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class ReceiptOCRSettings:
    """Receipt OCR settings, read from the environment."""

    def __init__(self):
        """Initialize settings from environment variables."""
        self.ocr_engine: str = os.getenv('OCR_ENGINE', 'tesseract').lower()
        self.ocr_language: str = os.getenv('OCR_LANGUAGE', 'eng')
        self.ocr_psm: int = int(os.getenv('OCR_PSM', '6'))
        self.ocr_oem: int = int(os.getenv('OCR_OEM', '3'))
        self.tesseract_cmd: Optional[str] = os.getenv('TESSERACT_CMD')
        self.ocr_timeout: float = float(os.getenv('OCR_TIMEOUT', '30'))
        self.ocr_pool_size: int = int(os.getenv('OCR_POOL_SIZE', '2'))
        self.ocr_retries: int = int(os.getenv('OCR_RETRIES', '1'))
        self.ocr_use_fallback: bool = _env_bool('OCR_USE_FALLBACK')
        self.max_upload_bytes: int = int(os.getenv('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))
        self.allowed_mime_types: List[str] = [
            m.strip().lower()
            for m in os.getenv('ALLOWED_MIME_TYPES', DEFAULT_ALLOWED_MIME_TYPES).split(',')
            if m.strip()
        ]
        self.min_item_confidence: float = float(os.getenv('MIN_ITEM_CONFIDENCE', '0.2'))
        self.review_confidence: float = float(os.getenv('REVIEW_CONFIDENCE', '0.6'))
        self.preprocess_default: str = os.getenv('PREPROCESS_DEFAULT', 'off').lower()
        self.data_dir: str = os.getenv('DATA_DIR', 'data')
        self.log_dir: str = os.getenv('LOG_DIR', 'logs')
        self.debug: bool = _env_bool('FLASK_DEBUG')

    @property
    def tesseract_config(self) -> str:
        """Tesseract CLI flags. Dense single-column segmentation suits receipts."""
        return f'--psm {self.ocr_psm} --oem {self.ocr_oem}'

    def validate(self) -> None:
        """Validate the configuration settings."""
        if self.ocr_engine not in OCR_ENGINES:
            raise ConfigError(f"Unknown OCR engine '{self.ocr_engine}'. "
                              f"Expected one of: {', '.join(OCR_ENGINES)}")

        if self.ocr_timeout <= 0:
            raise ConfigError("OCR timeout must be positive")

        if not 1 <= self.ocr_pool_size <= 4:
            raise ConfigError("OCR pool size must be between 1 and 4")

        if self.ocr_retries < 0:
            raise ConfigError("OCR retries cannot be negative")

        if self.max_upload_bytes < 1:
            raise ConfigError("Max upload size must be at least 1 byte")

        if not self.allowed_mime_types:
            raise ConfigError("At least one MIME type must be allowed")

        non_images = [m for m in self.allowed_mime_types if not m.startswith('image/')]
        if non_images:
            raise ConfigError(f"Only image MIME types can be allowed: {', '.join(non_images)}")

        for name in ('min_item_confidence', 'review_confidence'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be between 0 and 1")

        if self.preprocess_default not in PREPROCESS_MODES:
            raise ConfigError(f"Unknown preprocessing default '{self.preprocess_default}'. "
                              f"Expected one of: {', '.join(PREPROCESS_MODES)}")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            'ocr_engine': self.ocr_engine,
            'ocr_language': self.ocr_language,
            'ocr_psm': self.ocr_psm,
            'ocr_oem': self.ocr_oem,
            'tesseract_cmd': self.tesseract_cmd,
            'ocr_timeout': self.ocr_timeout,
            'ocr_pool_size': self.ocr_pool_size,
            'ocr_retries': self.ocr_retries,
            'ocr_use_fallback': self.ocr_use_fallback,
            'max_upload_bytes': self.max_upload_bytes,
            'allowed_mime_types': list(self.allowed_mime_types),
            'min_item_confidence': self.min_item_confidence,
            'review_confidence': self.review_confidence,
            'preprocess_default': self.preprocess_default,
            'data_dir': self.data_dir,
            'log_dir': self.log_dir,
            'debug': self.debug,
        }

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'ReceiptOCRSettings':
        """Create settings from the environment, overridden by a dictionary."""
        instance = cls()
        for key, value in config_dict.items():
            if not hasattr(instance, key):
                raise ConfigError(f"Unknown setting '{key}'")
            setattr(instance, key, value)
        return instance
