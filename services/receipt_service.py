"""
Receipt processing pipeline.

One receipt runs through validate, preprocess, recognize and parse inside a
single coroutine. Blocking work (image filters, OCR) is pushed to worker
threads, and the OCR engines are shared through a bounded pool.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, Union, List, Dict, Any

from config.settings import ReceiptOCRSettings
from models.draft import DraftItem, ReviewDraft
from models.raw_image import RawImage
from models.receipt import ParsedReceipt, ReceiptStatus, check_transition
from ocr import OCREnginePool, OCRError, OCRTimeoutError, RecognitionResult, create_engine_pool, get_engine_status
from storage.base import DraftStore, InventoryGateway
from utils.image_validator import assess_quality, validate_upload
from utils.logging_config import log_with_context
from .commit_bridge import CommitResult, CommitTarget, commit
from .draft_assembler import to_draft
from .errors import (
    CommitError, DraftNotFoundError, ImageValidationError, ReceiptProcessingCancelled,
    ReceiptProcessingError
)
from .image_preprocessor import ImagePreprocessor, PreprocessConfig, recommend_preprocessing
from .receipt_parser import ReceiptParser, ParserConfig

logger = logging.getLogger(__name__)

PreprocessOption = Union[None, bool, str, PreprocessConfig]


@dataclass
class ProcessOptions:
    """
    Per-call pipeline options.

    preprocess: None uses the configured default, False/'off' disables,
        True/'full' and 'quick' pick a preset, 'auto' decides from image
        quality, and a PreprocessConfig is used as given.
    min_item_confidence: Overrides the configured item confidence floor.
    reference_time: Fixed "now" for date parsing.
    """
    preprocess: PreprocessOption = None
    min_item_confidence: Optional[float] = None
    reference_time: Optional[datetime] = None


class CancellationToken:
    """Cooperative cancellation flag checked between pipeline stages."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise ReceiptProcessingCancelled(
                f"Receipt processing cancelled before {stage}",
                {'error_type': 'cancelled', 'stage': stage}
            )


class _PipelineRun:
    """Status and stage timings of one receipt run."""

    def __init__(self):
        self.status = ReceiptStatus.UPLOADED
        self.started = time.time()
        self.timings: Dict[str, float] = {}

    def advance(self, status: ReceiptStatus, stage: str, stage_started: float, **context) -> None:
        self.status = check_transition(self.status, status)
        self.timings[stage] = round(time.time() - stage_started, 4)
        log_with_context(logger, logging.INFO, f"Stage {stage} finished: {status.value}",
                         dict(context, stage=stage, seconds=self.timings[stage]))

    def end(self, status: ReceiptStatus, reason: str) -> None:
        self.status = check_transition(self.status, status)
        log_with_context(logger, logging.WARNING, f"Receipt run ended {status.value}: {reason}",
                         {'status': status.value, 'timings': self.timings,
                          'seconds': round(time.time() - self.started, 4)})


class ReceiptService:
    """
    Service for processing receipts using OCR and parsing.
    """

    def __init__(self,
                 settings: Optional[ReceiptOCRSettings] = None,
                 engine_pool: Optional[OCREnginePool] = None,
                 draft_store: Optional[DraftStore] = None,
                 inventory: Optional[InventoryGateway] = None,
                 preprocessor: Optional[ImagePreprocessor] = None):
        """
        Initialize the receipt service.

        Args:
            settings: Pipeline settings (read from the environment when omitted)
            engine_pool: OCR engine pool (built from settings when omitted)
            draft_store: Where review drafts are kept
            inventory: Gateway committed items are sent to
            preprocessor: Image preprocessor
        """
        self.settings = settings or ReceiptOCRSettings()
        self.settings.validate()
        self.engine_pool = engine_pool or create_engine_pool(self.settings)
        self.draft_store = draft_store
        self.inventory = inventory
        self.preprocessor = preprocessor or ImagePreprocessor()

    # Pipeline

    async def process_receipt_image(self, image_bytes: bytes,
                                    mime_type: Optional[str] = None,
                                    options: Optional[ProcessOptions] = None,
                                    cancel_token: Optional[CancellationToken] = None) -> ParsedReceipt:
        """
        Run an uploaded image through the pipeline.

        Args:
            image_bytes: Encoded image
            mime_type: Declared MIME type
            options: Per-call options
            cancel_token: Optional cancellation flag

        Returns:
            ParsedReceipt (status parsed)

        Raises:
            ImageValidationError: If the upload is rejected
            ReceiptProcessingError: If OCR failed after retries
            ReceiptProcessingCancelled: If the token was cancelled
        """
        receipt, _ = await self._run(image_bytes, mime_type, options, cancel_token)
        return receipt

    async def process_to_draft(self, image_bytes: bytes,
                               mime_type: Optional[str] = None,
                               options: Optional[ProcessOptions] = None,
                               cancel_token: Optional[CancellationToken] = None
                               ) -> Tuple[ParsedReceipt, ReviewDraft]:
        """Process an image and store the resulting review draft."""
        receipt, recognition = await self._run(image_bytes, mime_type, options, cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled('review')
        draft = self.create_draft(receipt, recognition.lines)
        return receipt, draft

    async def _run(self, image_bytes: bytes, mime_type: Optional[str],
                   options: Optional[ProcessOptions],
                   cancel_token: Optional[CancellationToken]) -> Tuple[ParsedReceipt, RecognitionResult]:
        options = options or ProcessOptions()
        token = cancel_token or CancellationToken()
        run = _PipelineRun()

        try:
            image = await asyncio.to_thread(
                validate_upload, image_bytes, mime_type,
                self.settings.allowed_mime_types, self.settings.max_upload_bytes
            )
            log_with_context(logger, logging.INFO, "Receipt upload accepted", image.describe())

            token.raise_if_cancelled('preprocessing')
            stage_started = time.time()
            processed, applied, warnings = await self._preprocess(image, options.preprocess)
            if processed is not image:
                run.advance(ReceiptStatus.PREPROCESSED, 'preprocess', stage_started, applied=applied)

            token.raise_if_cancelled('recognition')
            stage_started = time.time()
            recognition = await self._recognize(image, processed)
            run.advance(ReceiptStatus.RECOGNIZED, 'recognize', stage_started,
                        lines=len(recognition.lines), confidence=recognition.overall_confidence,
                        engine=recognition.engine.value if recognition.engine else None)

            token.raise_if_cancelled('parsing')
            stage_started = time.time()
            receipt = self._parser(options).parse(recognition.lines, options.reference_time)
            receipt.processing_applied = applied
            for warning in warnings:
                receipt.add_warning(warning)
            run.advance(ReceiptStatus.PARSED, 'parse', stage_started,
                        items=len(receipt.items), warnings=len(receipt.warnings))
            return receipt, recognition

        except ReceiptProcessingCancelled as e:
            run.end(ReceiptStatus.CANCELLED, str(e))
            raise
        except asyncio.CancelledError:
            run.end(ReceiptStatus.CANCELLED, 'task cancelled')
            raise
        except (ImageValidationError, ReceiptProcessingError) as e:
            run.end(ReceiptStatus.FAILED, str(e))
            raise
        except Exception as e:
            logger.error(f"Receipt processing failed at {run.status.value}: {str(e)}")
            run.end(ReceiptStatus.FAILED, str(e))
            raise

    async def _preprocess(self, image: RawImage,
                          option: PreprocessOption) -> Tuple[RawImage, List[str], List[str]]:
        """Returns the image to recognize, applied filter names and warnings."""
        warnings: List[str] = []
        config = self._preprocess_config(option)
        if config is None:
            quality = await asyncio.to_thread(assess_quality, image)
            warnings.extend(quality['warnings'])
            config = recommend_preprocessing(image, quality)
            logger.info(f"Auto preprocessing chose {'enabled' if config.enabled else 'disabled'} "
                        f"for {image.width}x{image.height} image")

        result = await asyncio.to_thread(self.preprocessor.run, image, config)
        warnings.extend(result.warnings)
        return result.image, list(result.applied), warnings

    def _preprocess_config(self, option: PreprocessOption) -> Optional[PreprocessConfig]:
        """Resolve the option to a config; None means decide from quality."""
        if isinstance(option, PreprocessConfig):
            return option
        if option is None:
            option = self.settings.preprocess_default
        if option is True:
            option = 'full'
        elif option is False:
            option = 'off'
        if option == 'auto':
            return None
        return PreprocessConfig.for_level(option)

    async def _recognize(self, original: RawImage, processed: RawImage) -> RecognitionResult:
        """OCR with retries; retries fall back to the unprocessed image."""
        attempts = 1 + self.settings.ocr_retries
        image = processed
        last_error: Optional[OCRError] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.engine_pool.recognize(image)
            except OCRError as e:
                last_error = e
                logger.error(f"OCR attempt {attempt}/{attempts} failed "
                             f"({e.error_type or 'processing'}): {str(e)}")
                if image is not original:
                    logger.warning("Retrying OCR on the unprocessed image")
                    image = original

        error_type = 'timeout' if isinstance(last_error, OCRTimeoutError) else (
            last_error.error_type or 'processing')
        raise ReceiptProcessingError(
            f"OCR failed after {attempts} attempt(s): {str(last_error)}",
            {'error_type': error_type, 'attempts': attempts,
             'engine': last_error.engine.value if last_error.engine else None}
        )

    def _parser(self, options: ProcessOptions) -> ReceiptParser:
        floor = options.min_item_confidence
        if floor is None:
            floor = self.settings.min_item_confidence
        return ReceiptParser(ParserConfig(min_item_confidence=floor))

    # Drafts

    def _require_store(self) -> DraftStore:
        if self.draft_store is None:
            raise ReceiptProcessingError("No draft store configured", {'error_type': 'configuration'},
                                         user_message="Drafts are not available.")
        return self.draft_store

    def create_draft(self, receipt: ParsedReceipt, lines=None) -> ReviewDraft:
        """Build a review draft from a parsed receipt and store it."""
        draft = to_draft(receipt, self.settings.review_confidence, lines)
        self._require_store().save_draft(draft)
        return draft

    def get_draft(self, draft_id: str) -> ReviewDraft:
        """
        Raises:
            DraftNotFoundError: If no draft has this id
        """
        draft = self._require_store().get_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError(f"Draft {draft_id} not found", {'draft_id': draft_id})
        return draft

    def list_drafts(self) -> List[ReviewDraft]:
        return self._require_store().list_drafts()

    def update_draft_item(self, draft_id: str, item_id: str, changes: Dict[str, Any]) -> DraftItem:
        """
        Apply user edits to a draft item and save the draft.

        Raises:
            DraftNotFoundError: If the draft or item does not exist
            CommitError: If the item was already committed
            pydantic.ValidationError: If the edit is invalid
        """
        draft = self.get_draft(draft_id)
        item = draft.get_item(item_id)
        if item is None:
            raise DraftNotFoundError(f"Item {item_id} not found in draft {draft_id}",
                                     {'draft_id': draft_id, 'item_id': item_id})
        if item.committed:
            raise CommitError(f"Item {item_id} is already in the inventory",
                              {'error_type': 'already_committed', 'item_id': item_id})
        updated = draft.update_item(item_id, changes)
        self._require_store().save_draft(draft)
        return updated

    def discard_draft(self, draft_id: str) -> None:
        """
        Cancel a draft and delete it.

        Raises:
            DraftNotFoundError: If the draft does not exist
            InvalidTransitionError: If the draft is already committed
        """
        draft = self.get_draft(draft_id)
        draft.move_to(ReceiptStatus.CANCELLED)
        self._require_store().delete_draft(draft_id)
        logger.info(f"Discarded draft {draft_id}")

    def commit_draft(self, draft_id: str, target: CommitTarget) -> CommitResult:
        """
        Send a draft's pending items to the inventory and save the outcome.

        Raises:
            DraftNotFoundError: If the draft does not exist
            CommitError: If there is nothing to commit or no inventory is configured
        """
        if self.inventory is None:
            raise CommitError("No inventory gateway configured", {'error_type': 'configuration'})
        draft = self.get_draft(draft_id)
        try:
            return commit(draft, target, self.inventory)
        finally:
            self._require_store().save_draft(draft)

    # Lifecycle

    def get_status(self) -> Dict[str, Any]:
        return {
            'settings': self.settings.to_dict(),
            'engine': get_engine_status(self.engine_pool),
        }

    def close(self) -> None:
        self.engine_pool.close()


async def process_receipt_image(image_bytes: bytes,
                                mime_type: Optional[str] = None,
                                options: Optional[ProcessOptions] = None,
                                settings: Optional[ReceiptOCRSettings] = None,
                                cancel_token: Optional[CancellationToken] = None) -> ParsedReceipt:
    """Process one image with a short-lived service."""
    service = ReceiptService(settings=settings)
    try:
        return await service.process_receipt_image(image_bytes, mime_type, options, cancel_token)
    finally:
        service.close()
