"""Test configuration and fixtures."""
import io
import os
from datetime import datetime
from typing import List, Sequence

import pytest
from PIL import Image, ImageDraw

from config.settings import ReceiptOCRSettings
from models.ocr_line import BoundingBox, RecognizedLine
from models.raw_image import RawImage
from ocr.base_ocr import BaseOCR, OCREngineType, OCRError
from ocr.engine_pool import OCREnginePool
from services.receipt_service import ReceiptService
from storage.json_storage import JSONStorage

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), 'fixtures')

# Fixed "now" for date parsing so results do not depend on the clock
REFERENCE_TIME = datetime(2024, 3, 20, 9, 0, 0)


def _make_lines(texts: Sequence[str], confidence: float = 0.92) -> List[RecognizedLine]:
    return [
        RecognizedLine(text=text, confidence=confidence,
                       bounding_box=BoundingBox(10, 20 * i, 400, 20 * i + 18), line_number=i)
        for i, text in enumerate(texts)
    ]


def _image_bytes(size=(600, 900), color=(255, 255, 255), image_format='PNG', text=True,
                 dense=False) -> bytes:
    image = Image.new('RGB', size, color)
    if text:
        draw = ImageDraw.Draw(image)
        columns = range(20, size[0] - 100, 120) if dense else [20]
        step = 20 if dense else 40
        for row in range(5, size[1] - 20, step):
            for x in columns:
                draw.text((x, row), "ITEM 1.99", fill=(0, 0, 0))
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


class StubEngine(BaseOCR):
    """Engine returning canned lines, or raising a queued list of errors first."""

    engine_type = OCREngineType.TESSERACT

    def __init__(self, lines=None, errors=None, fallback_engine=None):
        super().__init__(fallback_engine)
        self.lines = list(lines or [])
        self.errors = list(errors or [])
        self.calls: List[RawImage] = []
        self.closed = False

    def _extract_lines(self, image: RawImage) -> List[RecognizedLine]:
        self.calls.append(image)
        if self.errors:
            raise self.errors.pop(0)
        return list(self.lines)

    def close(self) -> None:
        self.closed = True
        super().close()


@pytest.fixture
def make_lines():
    """Build RecognizedLines from text with a shared confidence."""
    return _make_lines


@pytest.fixture
def fixture_lines():
    """Lines of the 22 item grocery receipt."""
    with open(os.path.join(FIXTURES_DIR, 'walmart_22_items.txt')) as f:
        texts = [line.rstrip('\n') for line in f if line.strip()]
    return _make_lines(texts)


@pytest.fixture
def reference_time():
    return REFERENCE_TIME


@pytest.fixture
def png_bytes():
    return _image_bytes()


@pytest.fixture
def jpeg_bytes():
    return _image_bytes(image_format='JPEG')


@pytest.fixture
def make_image_bytes():
    return _image_bytes


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the developer's environment."""
    return ReceiptOCRSettings.from_dict({
        'ocr_engine': 'tesseract',
        'ocr_timeout': 5.0,
        'ocr_pool_size': 1,
        'ocr_retries': 1,
        'ocr_use_fallback': False,
        'max_upload_bytes': 2 * 1024 * 1024,
        'allowed_mime_types': ['image/jpeg', 'image/png', 'image/webp'],
        'min_item_confidence': 0.2,
        'review_confidence': 0.6,
        'preprocess_default': 'off',
        'data_dir': str(tmp_path / 'data'),
        'log_dir': str(tmp_path / 'logs'),
        'debug': False,
    })


@pytest.fixture
def stub_engine(fixture_lines):
    return StubEngine(lines=fixture_lines)


@pytest.fixture
def engine_pool(stub_engine):
    return OCREnginePool(lambda: stub_engine, size=1, timeout=5.0)


@pytest.fixture
def storage(tmp_path):
    return JSONStorage(data_dir=str(tmp_path / 'data'))


@pytest.fixture
def receipt_service(settings, engine_pool, storage):
    service = ReceiptService(settings=settings, engine_pool=engine_pool,
                             draft_store=storage, inventory=storage)
    yield service
    service.close()


@pytest.fixture
def ocr_error():
    """Build an OCRError of a given type."""
    def build(error_type='processing'):
        return OCRError(f"engine failed: {error_type}", OCREngineType.TESSERACT,
                        {'error_type': error_type})
    return build


@pytest.fixture
def make_engine():
    """Build a StubEngine."""
    return StubEngine
