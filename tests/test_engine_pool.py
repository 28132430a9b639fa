"""Tests for the OCR engine pool."""
import asyncio
import threading
import time

import pytest

from models.raw_image import RawImage
from ocr import create_engine_pool, get_engine_status
from ocr.base_ocr import OCRError, OCRTimeoutError
from ocr.engine_pool import OCREnginePool


@pytest.fixture
def image(png_bytes):
    return RawImage.from_bytes(png_bytes)


def test_size_must_be_positive(make_engine):
    with pytest.raises(ValueError):
        OCREnginePool(make_engine, size=0)


def test_sessions_are_created_lazily(make_engine):
    pool = OCREnginePool(make_engine, size=2)

    assert pool.created == 0
    first = pool.acquire()
    second = pool.acquire()
    assert pool.created == 2
    assert first is not second

    pool.release(first)
    assert pool.acquire() is first


def test_acquire_times_out_when_exhausted(make_engine):
    pool = OCREnginePool(make_engine, size=1)
    pool.acquire()

    with pytest.raises(OCRTimeoutError):
        pool.acquire(timeout=0.05)


def test_waiting_caller_gets_released_session(make_engine):
    pool = OCREnginePool(make_engine, size=1)
    engine = pool.acquire()
    threading.Timer(0.05, pool.release, args=(engine,)).start()

    assert pool.acquire(timeout=2) is engine


def test_recognize(make_engine, make_lines, image):
    pool = OCREnginePool(lambda: make_engine(lines=make_lines(['BREAD 1.99'])), size=1)

    result = asyncio.run(pool.recognize(image))

    assert result.raw_text == 'BREAD 1.99'
    assert pool.get_status()['idle'] == 1


def test_session_is_released_after_error(make_engine, ocr_error, image):
    engine = make_engine(errors=[ocr_error()])
    pool = OCREnginePool(lambda: engine, size=1)

    with pytest.raises(OCRError):
        asyncio.run(pool.recognize(image))
    assert pool.acquire(timeout=0.1) is engine


def test_recognize_timeout(make_engine, make_lines, image):
    class SlowEngine(make_engine):
        def _extract_lines(self, image):
            time.sleep(0.5)
            return make_lines(['LATE 1.00'])

    pool = OCREnginePool(SlowEngine, size=1, timeout=0.1)

    with pytest.raises(OCRTimeoutError):
        asyncio.run(pool.recognize(image))


def test_concurrent_requests_share_bounded_sessions(make_engine, make_lines, image):
    created = []

    def factory():
        engine = make_engine(lines=make_lines(['MILK 3.49']))
        created.append(engine)
        return engine

    pool = OCREnginePool(factory, size=2, timeout=5)

    async def run_all():
        return await asyncio.gather(*(pool.recognize(image) for _ in range(6)))

    results = asyncio.run(run_all())

    assert len(results) == 6
    assert all(r.raw_text == 'MILK 3.49' for r in results)
    assert 1 <= len(created) <= 2
    assert sum(len(engine.calls) for engine in created) == 6


def test_close(make_engine):
    pool = OCREnginePool(make_engine, size=2)
    idle = pool.acquire()
    busy = pool.acquire()
    pool.release(idle)

    pool.close()

    assert idle.closed
    assert not busy.closed
    pool.release(busy)
    assert busy.closed
    with pytest.raises(OCRError) as excinfo:
        pool.acquire()
    assert excinfo.value.error_type == 'pool_closed'


def test_create_engine_pool_uses_settings(settings):
    pool = create_engine_pool(settings)

    assert pool.size == settings.ocr_pool_size
    assert pool.timeout == settings.ocr_timeout
    assert pool.created == 0


def test_engine_status_of_pool(make_engine):
    pool = OCREnginePool(make_engine, size=1)
    assert get_engine_status(pool)['engine_type'] is None

    pool.release(pool.acquire())
    status = get_engine_status(pool)
    assert status['engine_type'] == 'tesseract'
    assert status['created'] == 1


def test_engine_status_does_not_wait_for_busy_pool(make_engine):
    pool = OCREnginePool(make_engine, size=1, timeout=2.0)
    session = pool.acquire()

    started = time.time()
    status = get_engine_status(pool)

    assert time.time() - started < 1.0
    assert status['engine_type'] == 'tesseract'
    assert status['idle'] == 0
    pool.release(session)
