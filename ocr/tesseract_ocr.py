"""
Tesseract OCR engine implementation.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Any, Optional, Tuple

import pytesseract

from models.ocr_line import BoundingBox, RecognizedLine
from models.raw_image import RawImage
from .base_ocr import BaseOCR, OCRError, OCRTimeoutError, OCREngineType

logger = logging.getLogger(__name__)

# Columns image_to_data must return for lines to be rebuilt
REQUIRED_COLUMNS = (
    'page_num', 'block_num', 'par_num', 'line_num',
    'left', 'top', 'width', 'height', 'conf', 'text'
)


class TesseractOCR(BaseOCR):
    """
    OCR engine using Tesseract.

    Tesseract reports words nested under page, block, paragraph and line
    numbers. Words are regrouped here so callers only ever see flat lines.
    """

    engine_type = OCREngineType.TESSERACT

    def __init__(self,
                 tesseract_cmd: Optional[str] = None,
                 config: Optional[str] = None,
                 language: str = 'eng',
                 timeout: float = 30.0,
                 fallback_engine: Optional[BaseOCR] = None):
        """
        Initialize Tesseract OCR.

        Args:
            tesseract_cmd: Path to Tesseract executable (optional)
            config: Custom Tesseract configuration (optional)
            language: Tesseract language code
            timeout: Seconds before the tesseract process is killed
            fallback_engine: Optional fallback OCR engine
        """
        super().__init__(fallback_engine)

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        # psm 6: single uniform block of text, oem 3: default engine mode
        self.config = config or '--psm 6 --oem 3'
        self.language = language
        self.timeout = timeout

        # Verify Tesseract installation
        try:
            self.version = str(pytesseract.get_tesseract_version())
            logger.info(f"Initialized Tesseract OCR {self.version}")
        except Exception as e:
            logger.error(f"Failed to initialize Tesseract OCR: {str(e)}")
            raise OCRError(
                "Tesseract not properly installed or configured",
                self.engine_type,
                {'error_type': 'initialization'}
            )

    def _extract_lines(self, image: RawImage) -> List[RecognizedLine]:
        """Internal implementation of line extraction."""
        try:
            pil_image = image.to_pil()
        except Exception as e:
            raise OCRError(
                f"Unreadable image buffer: {str(e)}",
                self.engine_type,
                {'error_type': 'input_validation'}
            )

        try:
            ocr_data = pytesseract.image_to_data(
                pil_image,
                lang=self.language,
                config=self.config,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout
            )
        except RuntimeError as e:
            # pytesseract signals a killed process with a bare RuntimeError
            if 'timeout' in str(e).lower():
                raise OCRTimeoutError(
                    f"Tesseract did not finish within {self.timeout}s",
                    self.engine_type,
                    {'error_type': 'timeout'}
                )
            raise OCRError(
                f"Error extracting text with Tesseract: {str(e)}",
                self.engine_type,
                {'error_type': 'processing'}
            )
        except Exception as e:
            raise OCRError(
                f"Error extracting text with Tesseract: {str(e)}",
                self.engine_type,
                {'error_type': 'processing'}
            )

        return self.flatten(ocr_data)

    def flatten(self, ocr_data: Dict[str, List[Any]]) -> List[RecognizedLine]:
        """
        Regroup word rows from image_to_data into lines.

        Args:
            ocr_data: Column-oriented dict from pytesseract.Output.DICT

        Returns:
            Lines in the order Tesseract emitted them

        Raises:
            OCRError: If the output is missing columns or columns disagree in length
        """
        missing = [column for column in REQUIRED_COLUMNS if column not in ocr_data]
        if missing:
            raise OCRError(
                f"Tesseract output is missing columns: {', '.join(missing)}",
                self.engine_type,
                {'error_type': 'malformed_output', 'missing_columns': missing}
            )

        row_count = len(ocr_data['text'])
        if any(len(ocr_data[column]) != row_count for column in REQUIRED_COLUMNS):
            raise OCRError(
                "Tesseract output columns have inconsistent lengths",
                self.engine_type,
                {'error_type': 'malformed_output'}
            )

        grouped: 'OrderedDict[Tuple[int, int, int, int], List[Dict[str, Any]]]' = OrderedDict()
        for i in range(row_count):
            word = str(ocr_data['text'][i] or '').strip()
            try:
                conf = float(ocr_data['conf'][i])
            except (TypeError, ValueError):
                conf = -1.0

            # Structural rows (page/block/par/line) carry conf -1 and no text
            if not word or conf < 0:
                continue

            key = (
                int(ocr_data['page_num'][i]),
                int(ocr_data['block_num'][i]),
                int(ocr_data['par_num'][i]),
                int(ocr_data['line_num'][i]),
            )
            left, top = int(ocr_data['left'][i]), int(ocr_data['top'][i])
            grouped.setdefault(key, []).append({
                'text': word,
                'conf': conf,
                'box': BoundingBox(left, top,
                                   left + int(ocr_data['width'][i]),
                                   top + int(ocr_data['height'][i])),
            })

        lines = []
        for words in grouped.values():
            words.sort(key=lambda w: w['box'].x0)
            confidence = sum(w['conf'] for w in words) / len(words) / 100.0
            lines.append(RecognizedLine(
                text=' '.join(w['text'] for w in words),
                confidence=round(confidence, 4),
                bounding_box=BoundingBox.union(w['box'] for w in words),
                line_number=len(lines),
            ))

        logger.debug(f"Flattened {row_count} Tesseract rows into {len(lines)} lines")
        return lines

    def get_status(self) -> Dict[str, Any]:
        """Get status information about the engine."""
        status = super().get_status()
        status.update({
            'version': self.version,
            'config': self.config,
            'language': self.language,
            'timeout': self.timeout,
        })
        return status
