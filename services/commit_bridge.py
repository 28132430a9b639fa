"""Hands confirmed draft items to the inventory."""

import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional

from models.draft import DraftItem, ReviewDraft
from models.receipt import ReceiptStatus
from storage.base import InventoryGateway, NewInventoryItem
from .errors import CommitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitTarget:
    """Where committed items land in the inventory."""
    category_id: str
    location_id: str


@dataclass
class CreatedItem:
    index: int
    item_id: str
    inventory_id: str


@dataclass
class FailedItem:
    index: int
    item_id: str
    reason: str


@dataclass
class CommitResult:
    """Outcome of one commit attempt."""
    created: List[CreatedItem] = field(default_factory=list)
    failed: List[FailedItem] = field(default_factory=list)
    status: Optional[ReceiptStatus] = None

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def all_failed(self) -> bool:
        return not self.created and bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value if self.status else None
        return data


def _to_inventory_item(item: DraftItem, target: CommitTarget, draft_id: str) -> NewInventoryItem:
    return NewInventoryItem(
        name=item.name,
        price=item.price,
        quantity=item.quantity,
        category_id=target.category_id,
        location_id=target.location_id,
        barcode=item.barcode,
        source_draft_id=draft_id,
    )


def commit(draft: ReviewDraft, target: CommitTarget, inventory: InventoryGateway) -> CommitResult:
    """
    Create inventory items for every included, not yet committed draft item.

    Created items are marked committed on the draft, so calling again after
    a partial failure only resends the failed ones.

    Raises:
        CommitError: If the draft has nothing left to commit or cannot be committed
    """
    if draft.status not in (ReceiptStatus.REVIEW, ReceiptStatus.PARTIALLY_COMMITTED):
        raise CommitError(
            f"Draft {draft.id} cannot be committed from status {draft.status.value}",
            {'error_type': 'invalid_status', 'status': draft.status.value}
        )

    pending = draft.pending_items()
    if not pending:
        raise CommitError(
            f"Draft {draft.id} has no items to commit",
            {'error_type': 'nothing_to_commit'}
        )

    indexes = {item.id: i for i, item in enumerate(draft.items)}
    batch = [_to_inventory_item(item, target, draft.id) for item in pending]
    result = CommitResult()

    try:
        outcome = inventory.create_items(batch)
        created, failed = outcome.created, outcome.failed
    except Exception as e:
        # The whole batch failed; report every item rather than hiding it
        logger.error(f"Inventory gateway failed for draft {draft.id}: {str(e)}")
        created, failed = {}, {i: f"Inventory error: {str(e)}" for i in range(len(batch))}

    for batch_index, item in enumerate(pending):
        if batch_index in created:
            item.committed = True
            item.inventory_id = created[batch_index]
            item.last_error = None
            result.created.append(CreatedItem(indexes[item.id], item.id, item.inventory_id))
        else:
            reason = failed.get(batch_index, "Inventory did not report this item")
            item.last_error = reason
            result.failed.append(FailedItem(indexes[item.id], item.id, reason))

    if result.created:
        final = ReceiptStatus.COMMITTED if not draft.pending_items() else ReceiptStatus.PARTIALLY_COMMITTED
        draft.move_to(final)
    else:
        draft.touch()
    result.status = draft.status

    logger.info(f"Committed draft {draft.id}: {len(result.created)} created, "
                f"{len(result.failed)} failed, status {draft.status.value}")
    return result
