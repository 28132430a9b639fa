"""Google Cloud Vision OCR implementation."""

import logging
import time
from typing import Dict, List, Any, Optional

from google.cloud import vision

from config.google_vision_config import GoogleVisionConfig, GoogleVisionConfigError
from models.ocr_line import BoundingBox, RecognizedLine
from models.raw_image import RawImage
from .base_ocr import BaseOCR, OCRError, OCREngineType

logger = logging.getLogger(__name__)

BreakType = vision.TextAnnotation.DetectedBreak.BreakType

# Breaks that end a printed line
LINE_ENDING_BREAKS = (BreakType.LINE_BREAK, BreakType.EOL_SURE_SPACE)


class GoogleVisionOCR(BaseOCR):
    """Google Cloud Vision OCR implementation."""

    engine_type = OCREngineType.GOOGLE_VISION

    def __init__(self, config: Optional[GoogleVisionConfig] = None,
                 fallback_engine: Optional[BaseOCR] = None,
                 max_retries: Optional[int] = None, timeout: Optional[float] = None):
        """
        Initialize Google Vision OCR.

        Args:
            config: Vision configuration (read from the environment when omitted)
            fallback_engine: Optional fallback OCR engine
            max_retries: Maximum number of attempts per API call
            timeout: Timeout for API calls in seconds
        """
        super().__init__(fallback_engine)
        self.config = config or GoogleVisionConfig()
        self.max_retries = max(1, max_retries if max_retries is not None else self.config.max_retries)
        self.timeout = timeout if timeout is not None else self.config.timeout
        self._client = None

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        """Vision client, created on first use."""
        if self._client is None:
            try:
                self._client = self.config.create_client()
            except GoogleVisionConfigError as e:
                raise OCRError(
                    f"Failed to initialize Google Vision client: {str(e)}",
                    self.engine_type,
                    {**e.details, 'error_type': 'initialization', 'cause': e.details.get('error_type')}
                )
        return self._client

    def _extract_lines(self, image: RawImage) -> List[RecognizedLine]:
        """Internal implementation of line extraction."""
        vision_image = vision.Image(content=image.data)
        image_context = vision.ImageContext(language_hints=self.config.language_hints)

        response = None
        for attempt in range(self.max_retries):
            try:
                response = self.client.document_text_detection(
                    image=vision_image,
                    image_context=image_context,
                    timeout=self.timeout
                )
                break
            except OCRError:
                raise
            except Exception as e:
                if attempt == self.max_retries - 1:
                    raise OCRError(
                        f"Google Vision request failed after {self.max_retries} attempts: {str(e)}",
                        self.engine_type,
                        {'error_type': 'processing', 'last_error': str(e)}
                    )
                logger.warning(f"Attempt {attempt + 1}/{self.max_retries} failed: {str(e)}")
                time.sleep(1)

        if response.error.message:
            raise OCRError(
                f"Error detecting text: {response.error.message}",
                self.engine_type,
                {'error_type': 'api_error', 'api_error': response.error.message}
            )

        return self.flatten(response.full_text_annotation)

    def flatten(self, annotation) -> List[RecognizedLine]:
        """
        Flatten a full text annotation into lines.

        Vision nests pages, blocks, paragraphs, words and symbols. A line ends
        wherever a symbol carries a line-ending break.
        """
        lines: List[RecognizedLine] = []
        if annotation is None:
            return lines

        words: List[Dict[str, Any]] = []

        def close_line():
            if not words:
                return
            text = ' '.join(w['text'] for w in words).strip()
            if text:
                confidence = sum(w['confidence'] for w in words) / len(words)
                lines.append(RecognizedLine(
                    text=text,
                    confidence=round(confidence, 4),
                    bounding_box=BoundingBox.union(w['box'] for w in words),
                    line_number=len(lines),
                ))
            words.clear()

        for page in annotation.pages:
            for block in page.blocks:
                for paragraph in block.paragraphs:
                    for word in paragraph.words:
                        text = ''.join(symbol.text for symbol in word.symbols)
                        if text:
                            words.append({
                                'text': text,
                                'confidence': word.confidence,
                                'box': self._box(word.bounding_box),
                            })
                        last = word.symbols[-1] if word.symbols else None
                        if last is not None and last.property.detected_break.type_ in LINE_ENDING_BREAKS:
                            close_line()
                    close_line()

        logger.debug(f"Flattened Vision annotation into {len(lines)} lines")
        return lines

    @staticmethod
    def _box(bounding_poly) -> BoundingBox:
        vertices = list(bounding_poly.vertices)
        if not vertices:
            return BoundingBox()
        xs = [v.x for v in vertices]
        ys = [v.y for v in vertices]
        return BoundingBox(min(xs), min(ys), max(xs), max(ys))

    def close(self) -> None:
        """Release the gRPC channel."""
        if self._client is not None:
            transport = getattr(self._client, 'transport', None)
            if transport is not None:
                transport.close()
            self._client = None
        super().close()

    def get_status(self) -> Dict[str, Any]:
        """Get status information about the engine."""
        status = super().get_status()
        status.update(self.config.get_status())
        status.update({'max_retries': self.max_retries, 'timeout': self.timeout})
        return status
