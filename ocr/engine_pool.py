"""
Bounded pool of OCR engine sessions.

Engines are created lazily, at most ``size`` of them, and handed out one
caller at a time. Recognition runs in a worker thread so the event loop
stays free while the engine works.
"""

import asyncio
import logging
import queue
import threading
import time
from typing import Callable, Dict, Any, List, Optional

from models.raw_image import RawImage
from .base_ocr import BaseOCR, OCRError, OCRTimeoutError, RecognitionResult

logger = logging.getLogger(__name__)


class OCREnginePool:
    """Bounded, lazily-initialized set of OCR engine sessions."""

    def __init__(self, factory: Callable[[], BaseOCR], size: int = 2,
                 timeout: float = 30.0):
        """
        Initialize the pool.

        Args:
            factory: Callable returning a new engine session
            size: Maximum number of concurrent sessions
            timeout: Seconds a caller may wait for a session plus recognition
        """
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.factory = factory
        self.size = size
        self.timeout = timeout
        self._idle: 'queue.Queue[BaseOCR]' = queue.Queue()
        self._engines: List[BaseOCR] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def created(self) -> int:
        return len(self._engines)

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self, timeout: Optional[float] = None) -> BaseOCR:
        """
        Take a session, creating one if the pool has not reached its size.

        Raises:
            OCRError: If the pool is closed or no session frees up in time
        """
        if self._closed:
            raise OCRError("OCR engine pool is closed", details={'error_type': 'pool_closed'})

        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if len(self._engines) < self.size:
                engine = self.factory()
                self._engines.append(engine)
                logger.info(f"Created OCR engine session {len(self._engines)}/{self.size}")
                return engine

        wait = self.timeout if timeout is None else timeout
        try:
            return self._idle.get(True, wait)
        except queue.Empty:
            raise OCRTimeoutError(
                f"No OCR engine became available within {wait}s",
                details={'error_type': 'timeout', 'pool_size': self.size}
            )

    def release(self, engine: BaseOCR) -> None:
        """Return a session to the pool."""
        if self._closed:
            engine.close()
            return
        self._idle.put(engine)

    def recognize_sync(self, image: RawImage) -> RecognitionResult:
        """Blocking recognition on a pooled session."""
        start_time = time.time()
        engine = self.acquire()
        try:
            logger.debug(f"Acquired {engine.engine_type.value} session "
                         f"after {time.time() - start_time:.2f}s")
            return engine.recognize(image)
        finally:
            self.release(engine)

    async def recognize(self, image: RawImage) -> RecognitionResult:
        """
        Recognize an image without blocking the event loop.

        Raises:
            OCRTimeoutError: If waiting plus recognition exceeds the pool timeout
            OCRError: If the engine fails
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.recognize_sync, image),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            # The worker thread keeps running until the engine's own timeout fires
            raise OCRTimeoutError(
                f"OCR did not finish within {self.timeout}s",
                details={'error_type': 'timeout'}
            )

    def close(self) -> None:
        """Close every session. Sessions still in use close on release."""
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                engine = self._idle.get_nowait()
            except queue.Empty:
                break
            engine.close()
        logger.info(f"Closed OCR engine pool ({len(self._engines)} sessions)")

    def session_status(self) -> Optional[Dict[str, Any]]:
        """Status of an existing session, read without checking it out."""
        with self._lock:
            engine = self._engines[0] if self._engines else None
        return engine.get_status() if engine is not None else None

    def get_status(self) -> Dict[str, Any]:
        return {
            'size': self.size,
            'created': self.created,
            'idle': self._idle.qsize(),
            'timeout': self.timeout,
            'closed': self._closed,
        }
