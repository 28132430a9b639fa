"""Credentials and request settings for the Google Cloud Vision engine."""
import os
import json
import logging
from typing import Optional, Dict, Any, List

from google.cloud import vision
from google.oauth2 import service_account

logger = logging.getLogger(__name__)


class GoogleVisionConfigError(Exception):
    """Vision credentials or settings are unusable."""
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.details = details or {}


def _hints_from_env() -> List[str]:
    raw = os.getenv('GOOGLE_VISION_LANGUAGE_HINTS', 'en')
    return [hint.strip() for hint in raw.split(',') if hint.strip()]


class GoogleVisionConfig:
    """
    Service account credentials plus endpoint, timeout, retry and language
    settings for document text detection.

    Environment:
        GOOGLE_APPLICATION_CREDENTIALS: Service account JSON file
        GOOGLE_VISION_API_ENDPOINT: Regional endpoint override
        GOOGLE_VISION_TIMEOUT: Per-request timeout in seconds (30)
        GOOGLE_VISION_MAX_RETRIES: Attempts per request (3)
        GOOGLE_VISION_LANGUAGE_HINTS: Comma separated language codes (en)
    """

    DEFAULT_SCOPES = ['https://www.googleapis.com/auth/cloud-vision']
    REQUIRED_CREDS_FIELDS = ('type', 'project_id', 'private_key_id', 'private_key', 'client_email')

    def __init__(self, credentials_path: Optional[str] = None):
        self.credentials_path: Optional[str] = (
            credentials_path or os.getenv('GOOGLE_APPLICATION_CREDENTIALS')
        )
        self.api_endpoint: Optional[str] = os.getenv('GOOGLE_VISION_API_ENDPOINT')
        self.timeout: int = int(os.getenv('GOOGLE_VISION_TIMEOUT', '30'))
        self.max_retries: int = int(os.getenv('GOOGLE_VISION_MAX_RETRIES', '3'))
        self.language_hints: List[str] = _hints_from_env()
        self._credentials = None

    @property
    def is_configured(self) -> bool:
        """Credentials file is set and exists; contents are checked by validate()."""
        return bool(self.credentials_path) and os.path.isfile(self.credentials_path)

    def _read_credentials(self) -> Dict[str, Any]:
        if not self.credentials_path:
            raise GoogleVisionConfigError(
                "Google Cloud Vision credentials path not set; set GOOGLE_APPLICATION_CREDENTIALS",
                {'error_type': 'missing_credentials_path'}
            )
        if not os.path.isfile(self.credentials_path):
            raise GoogleVisionConfigError(
                f"Credentials file not found: {self.credentials_path}",
                {'error_type': 'credentials_not_found', 'path': self.credentials_path}
            )
        try:
            with open(self.credentials_path) as f:
                info = json.load(f)
        except json.JSONDecodeError as e:
            raise GoogleVisionConfigError(
                f"Credentials file is not valid JSON: {str(e)}",
                {'error_type': 'invalid_json', 'path': self.credentials_path}
            )

        missing = [name for name in self.REQUIRED_CREDS_FIELDS if name not in info]
        if missing:
            raise GoogleVisionConfigError(
                f"Credentials file is missing {', '.join(missing)}",
                {'error_type': 'missing_fields', 'missing_fields': missing}
            )
        return info

    def validate(self) -> Dict[str, Any]:
        """
        Check the request settings and the credentials file.

        Returns:
            The parsed service account info

        Raises:
            GoogleVisionConfigError: If anything is unusable
        """
        if self.timeout < 1:
            raise GoogleVisionConfigError("GOOGLE_VISION_TIMEOUT must be at least 1 second",
                                          {'error_type': 'invalid_timeout', 'value': self.timeout})
        if self.max_retries < 0:
            raise GoogleVisionConfigError("GOOGLE_VISION_MAX_RETRIES cannot be negative",
                                          {'error_type': 'invalid_retries', 'value': self.max_retries})
        return self._read_credentials()

    def create_client(self) -> vision.ImageAnnotatorClient:
        """
        Build an ImageAnnotatorClient; credentials are loaded once and reused.

        Raises:
            GoogleVisionConfigError: If validation or client creation fails
        """
        info = self.validate()
        try:
            if self._credentials is None:
                self._credentials = service_account.Credentials.from_service_account_info(
                    info, scopes=self.DEFAULT_SCOPES
                )
            client = vision.ImageAnnotatorClient(
                credentials=self._credentials,
                client_options={'api_endpoint': self.api_endpoint} if self.api_endpoint else None
            )
        except Exception as e:
            raise GoogleVisionConfigError(
                f"Failed to create Vision client: {str(e)}",
                {'error_type': 'client_creation_error', 'original_error': str(e)}
            )
        logger.info(f"Vision client created for project {info.get('project_id')}")
        return client

    def to_dict(self) -> Dict[str, Any]:
        return {
            'credentials_path': self.credentials_path,
            'api_endpoint': self.api_endpoint,
            'timeout': self.timeout,
            'max_retries': self.max_retries,
            'language_hints': list(self.language_hints),
        }

    def get_status(self) -> Dict[str, Any]:
        return dict(self.to_dict(), is_configured=self.is_configured,
                    has_credentials=self._credentials is not None)
