"""Base OCR engine interface."""

import logging
import time
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from enum import Enum

from models.ocr_line import RecognizedLine
from models.raw_image import RawImage

logger = logging.getLogger(__name__)


class OCREngineType(Enum):
    """Supported OCR engine types."""
    GOOGLE_VISION = "google_vision"
    TESSERACT = "tesseract"


@dataclass
class RecognitionResult:
    """Flat, engine-independent output of a recognition run."""
    lines: List[RecognizedLine]
    overall_confidence: float
    raw_text: str
    engine: Optional[OCREngineType] = None
    processing_time: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_lines(cls, lines: List[RecognizedLine], engine: OCREngineType,
                   **kwargs) -> 'RecognitionResult':
        """Build a result, deriving raw text and mean confidence from the lines."""
        confidence = sum(line.confidence for line in lines) / len(lines) if lines else 0.0
        return cls(
            lines=lines,
            overall_confidence=round(confidence, 4),
            raw_text='\n'.join(line.text for line in lines),
            engine=engine,
            **kwargs
        )


class OCRError(Exception):
    """Base exception for OCR errors."""
    def __init__(self, message: str, engine: OCREngineType = None, details: Dict[str, Any] = None):
        super().__init__(message)
        self.engine = engine
        self.details = details or {}

    @property
    def error_type(self) -> Optional[str]:
        return self.details.get('error_type')


class OCRTimeoutError(OCRError):
    """Recognition did not finish within the allotted time."""


class BaseOCR(ABC):
    """Abstract base class for OCR engines."""

    engine_type: OCREngineType = None

    def __init__(self, fallback_engine: Optional['BaseOCR'] = None):
        """
        Initialize OCR engine.

        Args:
            fallback_engine: Optional fallback OCR engine to use if primary fails
        """
        self.fallback_engine = fallback_engine

    @abstractmethod
    def _extract_lines(self, image: RawImage) -> List[RecognizedLine]:
        """
        Run the engine and flatten its output into lines.

        Args:
            image: Image to recognize

        Returns:
            Recognized lines in engine reading order

        Raises:
            OCRError: If recognition fails or the output cannot be read
        """
        pass

    def recognize(self, image: RawImage) -> RecognitionResult:
        """
        Recognize text lines in an image, trying the fallback engine on failure.

        Raises:
            OCRError: If recognition fails or produced no text
        """
        return self.try_with_fallback('recognize', image)

    def close(self) -> None:
        """Release engine resources."""
        if self.fallback_engine:
            self.fallback_engine.close()

    def get_status(self) -> Dict[str, Any]:
        return {
            'engine_type': self.engine_type.value,
            'has_fallback': bool(self.fallback_engine),
        }

    def _recognize(self, image: RawImage) -> RecognitionResult:
        """Internal implementation of recognize."""
        start_time = time.time()
        lines = self._extract_lines(image)
        if not lines:
            raise OCRError(
                "No text detected in image",
                self.engine_type,
                {'error_type': 'no_text_detected'}
            )
        return RecognitionResult.from_lines(
            lines, self.engine_type, processing_time=time.time() - start_time
        )

    def try_with_fallback(self, method: str, *args, **kwargs) -> Any:
        """
        Try a method with fallback support.

        Args:
            method: Name of method to try
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result from primary or fallback engine

        Raises:
            OCRError: If both primary and fallback fail
        """
        try:
            return getattr(self, f"_{method}")(*args, **kwargs)
        except OCRError as e:
            if isinstance(e, OCRTimeoutError) or not self.fallback_engine:
                raise
            logger.warning(f"{self.engine_type.value} failed ({str(e)}), trying fallback engine")
            try:
                return getattr(self.fallback_engine, method)(*args, **kwargs)
            except Exception as fallback_error:
                raise OCRError(
                    f"Both primary and fallback engines failed. Primary: {str(e)}, Fallback: {str(fallback_error)}",
                    self.engine_type,
                    {
                        'error_type': e.error_type or 'processing',
                        'primary_error': str(e),
                        'fallback_error': str(fallback_error)
                    }
                )
