from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.draft import ReviewDraft


class NewInventoryItem(BaseModel):
    """An inventory record as handed to the gateway."""
    name: str
    price: float
    quantity: float = 1
    category_id: str
    location_id: str
    barcode: Optional[str] = None
    source_draft_id: Optional[str] = None


@dataclass
class CreateItemsResult:
    """Per-index outcome of a batch create."""
    created: Dict[int, str] = field(default_factory=dict)  # batch index -> inventory id
    failed: Dict[int, str] = field(default_factory=dict)   # batch index -> reason


class InventoryGateway(ABC):
    """Outbound port to the inventory store."""

    @abstractmethod
    def create_items(self, items: List[NewInventoryItem]) -> CreateItemsResult:
        """Create inventory items, reporting each failure by batch index."""
        pass


class DraftStore(ABC):
    """Persistence for review drafts."""

    @abstractmethod
    def save_draft(self, draft: ReviewDraft) -> None:
        """Insert or replace a draft."""
        pass

    @abstractmethod
    def get_draft(self, draft_id: str) -> Optional[ReviewDraft]:
        """Retrieve a draft by ID."""
        pass

    @abstractmethod
    def delete_draft(self, draft_id: str) -> bool:
        """Delete a draft by ID. Returns whether it existed."""
        pass

    @abstractmethod
    def list_drafts(self) -> List[ReviewDraft]:
        """All stored drafts, newest first."""
        pass
