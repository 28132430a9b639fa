"""Parsed receipt model implementation."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any
import logging
import re

from pydantic import BaseModel, Field, field_validator

from services.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class ReceiptStatus(str, Enum):
    """Stages a receipt moves through from upload to inventory."""
    UPLOADED = "uploaded"
    PREPROCESSED = "preprocessed"
    RECOGNIZED = "recognized"
    PARSED = "parsed"
    REVIEW = "review"
    COMMITTED = "committed"
    PARTIALLY_COMMITTED = "partially_committed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    ReceiptStatus.UPLOADED: {ReceiptStatus.PREPROCESSED, ReceiptStatus.RECOGNIZED,
                             ReceiptStatus.FAILED, ReceiptStatus.CANCELLED},
    ReceiptStatus.PREPROCESSED: {ReceiptStatus.RECOGNIZED, ReceiptStatus.FAILED,
                                 ReceiptStatus.CANCELLED},
    ReceiptStatus.RECOGNIZED: {ReceiptStatus.PARSED, ReceiptStatus.FAILED,
                               ReceiptStatus.CANCELLED},
    ReceiptStatus.PARSED: {ReceiptStatus.REVIEW, ReceiptStatus.FAILED,
                           ReceiptStatus.CANCELLED},
    ReceiptStatus.REVIEW: {ReceiptStatus.COMMITTED, ReceiptStatus.PARTIALLY_COMMITTED,
                           ReceiptStatus.CANCELLED},
    ReceiptStatus.PARTIALLY_COMMITTED: {ReceiptStatus.COMMITTED,
                                        ReceiptStatus.PARTIALLY_COMMITTED,
                                        ReceiptStatus.CANCELLED},
    ReceiptStatus.COMMITTED: set(),
    ReceiptStatus.FAILED: set(),
    ReceiptStatus.CANCELLED: set(),
}


def check_transition(current: ReceiptStatus, target: ReceiptStatus) -> ReceiptStatus:
    """
    Validate a status change.

    Raises:
        InvalidTransitionError: If target cannot be reached from current
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move receipt from {current.value} to {target.value}",
            {'current': current.value, 'target': target.value}
        )
    return target


class ParsedItem(BaseModel):
    """A candidate line item extracted from a receipt."""

    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    quantity: float = Field(default=1, gt=0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    barcode: Optional[str] = None
    tax_flag: Optional[str] = None
    line_number: Optional[int] = None
    raw_text: Optional[str] = None

    @field_validator('name')
    @classmethod
    def clean_name(cls, v):
        """Collapse whitespace left over from column alignment."""
        v = ' '.join(v.split())
        if not v:
            raise ValueError('Item name cannot be blank')
        return v

    @field_validator('price')
    @classmethod
    def round_price(cls, v):
        return round(v, 2)

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class ParsedReceipt(BaseModel):
    """Aggregate result of parsing one receipt."""

    merchant_name: Optional[str] = None
    transaction_date: Optional[datetime] = None
    date_defaulted: bool = False
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    items: List[ParsedItem] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    ocr_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_text: str = ""
    warnings: List[str] = Field(default_factory=list)
    processing_applied: List[str] = Field(default_factory=list)
    status: ReceiptStatus = ReceiptStatus.PARSED

    @field_validator('merchant_name')
    @classmethod
    def clean_merchant_name(cls, v):
        """Clean merchant name whitespace and stray OCR symbols."""
        if v is None:
            return v
        v = ' '.join(v.split())
        v = re.sub(r'^[^\w]+|[^\w.)]+$', '', v)
        return v or None

    @property
    def items_total(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)

    def add_warning(self, message: str) -> None:
        """Record a non-fatal parse anomaly."""
        if message not in self.warnings:
            logger.debug(f"Receipt warning: {message}")
            self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable representation."""
        return self.model_dump(mode='json')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParsedReceipt':
        return cls.model_validate(data)
