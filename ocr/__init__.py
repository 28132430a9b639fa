"""OCR module for receipt processing.

This module provides OCR engines for text extraction from receipt images.
Both Tesseract and Google Cloud Vision are supported behind a common
interface that yields flat recognized lines.
"""

import logging
from typing import Optional, Dict, Any, Union

from config.settings import ReceiptOCRSettings
from .base_ocr import BaseOCR, RecognitionResult, OCRError, OCRTimeoutError, OCREngineType
from .engine_pool import OCREnginePool
from .google_vision_ocr import GoogleVisionOCR
from .tesseract_ocr import TesseractOCR

logger = logging.getLogger(__name__)


def _tesseract(settings: ReceiptOCRSettings, fallback: Optional[BaseOCR] = None) -> TesseractOCR:
    return TesseractOCR(
        tesseract_cmd=settings.tesseract_cmd,
        config=settings.tesseract_config,
        language=settings.ocr_language,
        timeout=settings.ocr_timeout,
        fallback_engine=fallback
    )


def _google_vision(settings: ReceiptOCRSettings, fallback: Optional[BaseOCR] = None) -> GoogleVisionOCR:
    return GoogleVisionOCR(timeout=settings.ocr_timeout, fallback_engine=fallback)


def create_ocr_engine(
    engine_type: Union[OCREngineType, str, None] = None,
    settings: Optional[ReceiptOCRSettings] = None,
    use_fallback: Optional[bool] = None
) -> BaseOCR:
    """
    Create an OCR engine with optional fallback.

    Args:
        engine_type: Primary OCR engine to use (defaults to settings.ocr_engine)
        settings: Pipeline settings (read from the environment when omitted)
        use_fallback: Whether to chain the other engine as fallback

    Returns:
        Configured OCR engine

    Raises:
        OCRError: If engine creation fails
    """
    settings = settings or ReceiptOCRSettings()
    engine_type = OCREngineType(engine_type or settings.ocr_engine)
    if use_fallback is None:
        use_fallback = settings.ocr_use_fallback

    try:
        fallback = None
        if use_fallback:
            try:
                if engine_type == OCREngineType.GOOGLE_VISION:
                    fallback = _tesseract(settings)
                else:
                    fallback = _google_vision(settings)
                logger.info(f"Created {fallback.engine_type.value} fallback engine")
            except OCRError as e:
                logger.warning(f"Failed to create fallback engine: {str(e)}")

        if engine_type == OCREngineType.GOOGLE_VISION:
            engine = _google_vision(settings, fallback)
        else:
            engine = _tesseract(settings, fallback)
        logger.info(f"Created {engine_type.value} primary engine")
        return engine

    except OCRError:
        raise
    except Exception as e:
        raise OCRError(
            f"Failed to create OCR engine: {str(e)}",
            engine_type,
            {'error_type': 'engine_creation'}
        )


def create_engine_pool(settings: Optional[ReceiptOCRSettings] = None) -> OCREnginePool:
    """Build an engine pool whose sessions come from create_ocr_engine."""
    settings = settings or ReceiptOCRSettings()
    return OCREnginePool(
        lambda: create_ocr_engine(settings=settings),
        size=settings.ocr_pool_size,
        timeout=settings.ocr_timeout
    )


def get_engine_status(engine: Union[BaseOCR, OCREnginePool]) -> Dict[str, Any]:
    """Get status information about an OCR engine or pool."""
    if isinstance(engine, OCREnginePool):
        status = engine.get_status()
        status['engine_type'] = None
        # Sessions keep no per-call state, so a busy one can still report
        session = engine.session_status()
        if session:
            status.update(session)
        return status
    return engine.get_status()


__all__ = [
    'BaseOCR', 'RecognitionResult', 'OCRError', 'OCRTimeoutError', 'OCREngineType',
    'OCREnginePool', 'GoogleVisionOCR', 'TesseractOCR',
    'create_ocr_engine', 'create_engine_pool', 'get_engine_status',
]
