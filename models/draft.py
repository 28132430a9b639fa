"""Review draft models: parsed receipts awaiting user confirmation."""

from datetime import datetime
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from models.receipt import ReceiptStatus, check_transition


def _new_id() -> str:
    return uuid4().hex


class DraftItem(BaseModel):
    """An editable candidate item shown to the user for review."""

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    quantity: float = Field(default=1, gt=0)
    include: bool = True
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needs_review: bool = False
    barcode: Optional[str] = None
    line_number: Optional[int] = None
    committed: bool = False
    inventory_id: Optional[str] = None
    last_error: Optional[str] = None

    @field_validator('name')
    @classmethod
    def clean_name(cls, v):
        v = ' '.join(v.split())
        if not v:
            raise ValueError('Item name cannot be blank')
        return v


class DraftItemUpdate(BaseModel):
    """User edits for a single draft item. Unset fields are left alone."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[float] = Field(default=None, gt=0)
    include: Optional[bool] = None


class ReviewDraft(BaseModel):
    """A parsed receipt packaged for review before anything is persisted."""

    id: str = Field(default_factory=_new_id)
    status: ReceiptStatus = ReceiptStatus.REVIEW
    merchant_name: Optional[str] = None
    transaction_date: Optional[datetime] = None
    date_defaulted: bool = False
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    overall_confidence: float = 0.0
    confidence_status: str = "poor"
    recommendations: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    raw_text: str = ""
    items: List[DraftItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    def get_item(self, item_id: str) -> Optional[DraftItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def update_item(self, item_id: str, changes: Dict[str, Any]) -> DraftItem:
        """
        Apply user edits to one item.

        Args:
            item_id: Draft item id
            changes: Any of name, price, quantity, include

        Returns:
            The updated item

        Raises:
            KeyError: If the item does not exist
            pydantic.ValidationError: If the edit is invalid
        """
        index = next((i for i, item in enumerate(self.items) if item.id == item_id), None)
        if index is None:
            raise KeyError(item_id)

        update = DraftItemUpdate.model_validate(changes)
        fields = update.model_dump(exclude_none=True)
        merged = self.items[index].model_dump()
        merged.update(fields)
        self.items[index] = DraftItem.model_validate(merged)
        self.updated_at = datetime.now()
        return self.items[index]

    def pending_items(self) -> List[DraftItem]:
        """Included items not yet handed to the inventory."""
        return [item for item in self.items if item.include and not item.committed]

    def move_to(self, status: ReceiptStatus) -> None:
        self.status = check_transition(self.status, status)
        self.touch()

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReviewDraft':
        return cls.model_validate(data)
