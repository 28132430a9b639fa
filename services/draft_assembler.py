"""Packages a parsed receipt as an editable review draft."""

import logging
from typing import Optional, Sequence

from models.draft import DraftItem, ReviewDraft
from models.ocr_line import RecognizedLine
from models.receipt import ParsedReceipt, ReceiptStatus, check_transition
from .confidence_scorer import analyze_confidence, overall_status

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_THRESHOLD = 0.6


def to_draft(receipt: ParsedReceipt,
             review_threshold: float = DEFAULT_REVIEW_THRESHOLD,
             lines: Optional[Sequence[RecognizedLine]] = None) -> ReviewDraft:
    """
    Build a review draft from a parsed receipt.

    Items keep their confidence; those under ``review_threshold`` are marked
    ``needs_review``. Nothing is filtered or corrected here.

    Args:
        receipt: Parsed receipt (status parsed)
        review_threshold: Item confidence below which review is flagged
        lines: Recognized lines, for per-field recommendations

    Returns:
        ReviewDraft in status review
    """
    check_transition(receipt.status, ReceiptStatus.REVIEW)

    if lines is not None:
        analysis = analyze_confidence(receipt, lines)
        status, recommendations = analysis.status, analysis.recommendations
    else:
        status, recommendations = overall_status(receipt.overall_confidence), []

    items = [
        DraftItem(
            name=item.name,
            price=item.price,
            quantity=item.quantity,
            confidence=item.confidence,
            needs_review=item.confidence < review_threshold,
            barcode=item.barcode,
            line_number=item.line_number,
        )
        for item in receipt.items
    ]

    draft = ReviewDraft(
        merchant_name=receipt.merchant_name,
        transaction_date=receipt.transaction_date,
        date_defaulted=receipt.date_defaulted,
        subtotal=receipt.subtotal,
        tax=receipt.tax,
        total=receipt.total,
        overall_confidence=receipt.overall_confidence,
        confidence_status=status,
        recommendations=recommendations,
        warnings=list(receipt.warnings),
        raw_text=receipt.raw_text,
        items=items,
    )

    flagged = sum(1 for item in items if item.needs_review)
    logger.info(f"Draft {draft.id}: {len(items)} items, {flagged} flagged for review")
    return draft
