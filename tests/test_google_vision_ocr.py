"""Tests for Google Cloud Vision OCR implementation."""
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from config.google_vision_config import GoogleVisionConfigError
from models.raw_image import RawImage
from ocr.base_ocr import OCRError
from ocr.google_vision_ocr import BreakType, GoogleVisionOCR


def _word(text, confidence=0.9, x=0, y=0, end=None):
    """A Vision word whose last symbol carries the given break type."""
    symbols = [
        SimpleNamespace(text=char, property=SimpleNamespace(
            detected_break=SimpleNamespace(type_=BreakType.UNKNOWN)))
        for char in text
    ]
    if end is not None:
        symbols[-1].property.detected_break.type_ = end
    vertices = [SimpleNamespace(x=x, y=y), SimpleNamespace(x=x + 10 * len(text), y=y),
                SimpleNamespace(x=x + 10 * len(text), y=y + 20), SimpleNamespace(x=x, y=y + 20)]
    return SimpleNamespace(symbols=symbols, confidence=confidence,
                           bounding_box=SimpleNamespace(vertices=vertices))


def _annotation(*paragraphs):
    blocks = [SimpleNamespace(paragraphs=[SimpleNamespace(words=words) for words in paragraphs])]
    return SimpleNamespace(pages=[SimpleNamespace(blocks=blocks)])


def _response(annotation, error=''):
    return SimpleNamespace(full_text_annotation=annotation, error=SimpleNamespace(message=error))


@pytest.fixture
def mock_config():
    config = Mock()
    config.language_hints = ['en']
    config.max_retries = 3
    config.timeout = 30
    config.get_status.return_value = {'is_configured': True}
    return config


@pytest.fixture
def mock_vision_client(mock_config):
    client = Mock()
    mock_config.create_client.return_value = client
    return client


@pytest.fixture
def vision_ocr(mock_config, mock_vision_client):
    return GoogleVisionOCR(config=mock_config)


@pytest.fixture
def image(png_bytes):
    return RawImage.from_bytes(png_bytes)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch('ocr.google_vision_ocr.time.sleep'):
        yield


def test_client_is_created_lazily(mock_config, mock_vision_client):
    ocr = GoogleVisionOCR(config=mock_config)

    mock_config.create_client.assert_not_called()
    assert ocr.client is mock_vision_client
    assert ocr.client is mock_vision_client
    mock_config.create_client.assert_called_once()


def test_client_creation_error(mock_config):
    mock_config.create_client.side_effect = GoogleVisionConfigError(
        "Credentials file not found", {'error_type': 'credentials_not_found'})
    ocr = GoogleVisionOCR(config=mock_config)

    with pytest.raises(OCRError) as excinfo:
        ocr.client
    assert excinfo.value.error_type == 'initialization'
    assert excinfo.value.details['cause'] == 'credentials_not_found'


def test_lines_split_on_line_breaks(vision_ocr, mock_vision_client, image):
    annotation = _annotation(
        [
            _word('WALMART', 0.98, x=10, y=0, end=BreakType.EOL_SURE_SPACE),
            _word('BREAD', 0.9, x=10, y=30, end=BreakType.SPACE),
            _word('1.88', 0.8, x=200, y=30, end=BreakType.LINE_BREAK),
        ],
        [
            _word('TOTAL', 0.7, x=10, y=60),
            _word('1.88', 0.9, x=200, y=60),
        ],
    )
    mock_vision_client.document_text_detection.return_value = _response(annotation)

    result = vision_ocr.recognize(image)

    assert [line.text for line in result.lines] == ['WALMART', 'BREAD 1.88', 'TOTAL 1.88']
    assert [line.line_number for line in result.lines] == [0, 1, 2]
    assert result.lines[1].confidence == 0.85
    assert result.lines[1].bounding_box.x0 == 10
    assert result.lines[1].bounding_box.x1 == 240
    assert result.engine.value == 'google_vision'

    kwargs = mock_vision_client.document_text_detection.call_args.kwargs
    assert kwargs['image'].content == image.data
    assert list(kwargs['image_context'].language_hints) == ['en']
    assert kwargs['timeout'] == 30


def test_api_error(vision_ocr, mock_vision_client, image):
    mock_vision_client.document_text_detection.return_value = _response(_annotation(), 'quota exceeded')

    with pytest.raises(OCRError) as excinfo:
        vision_ocr.recognize(image)
    assert excinfo.value.error_type == 'api_error'
    assert 'quota exceeded' in str(excinfo.value)


def test_retries_then_succeeds(vision_ocr, mock_vision_client, image):
    annotation = _annotation([_word('MILK', end=BreakType.LINE_BREAK)])
    mock_vision_client.document_text_detection.side_effect = [
        ConnectionError('reset'), _response(annotation)
    ]

    result = vision_ocr.recognize(image)

    assert result.raw_text == 'MILK'
    assert mock_vision_client.document_text_detection.call_count == 2


def test_retries_exhausted(vision_ocr, mock_vision_client, image):
    mock_vision_client.document_text_detection.side_effect = ConnectionError('reset')

    with pytest.raises(OCRError) as excinfo:
        vision_ocr.recognize(image)
    assert excinfo.value.error_type == 'processing'
    assert mock_vision_client.document_text_detection.call_count == 3


def test_empty_annotation(vision_ocr, mock_vision_client, image):
    mock_vision_client.document_text_detection.return_value = _response(_annotation())

    with pytest.raises(OCRError) as excinfo:
        vision_ocr.recognize(image)
    assert excinfo.value.error_type == 'no_text_detected'


def test_close_releases_transport(vision_ocr, mock_vision_client):
    vision_ocr.client
    vision_ocr.close()

    mock_vision_client.transport.close.assert_called_once()


def test_get_status(vision_ocr):
    status = vision_ocr.get_status()

    assert status['engine_type'] == 'google_vision'
    assert status['is_configured'] is True
    assert status['max_retries'] == 3
