"""Utility functions for receipt processing.

This package contains upload validation, image quality metrics and the
logging setup shared by the app and the CLI.
"""

from .image_validator import validate_upload, assess_quality
from .logging_config import setup_logging, log_with_context

__all__ = [
    'validate_upload',
    'assess_quality',
    'setup_logging',
    'log_with_context'
]
