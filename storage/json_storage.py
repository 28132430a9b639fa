import json
import os
import threading
from datetime import date, datetime
from typing import Dict, List, Optional, Union
from uuid import UUID, uuid4
import logging

from pydantic import ValidationError

from models.draft import ReviewDraft
from storage.base import CreateItemsResult, DraftStore, InventoryGateway, NewInventoryItem

logger = logging.getLogger(__name__)


class JSONStorage(InventoryGateway, DraftStore):
    """Storage implementation using JSON files."""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = data_dir
        self.drafts_dir = os.path.join(data_dir, "drafts")
        self.inventory_path = os.path.join(data_dir, "inventory.json")
        self._lock = threading.Lock()
        self._ensure_data_dirs()

    def _ensure_data_dirs(self) -> None:
        """Ensure that all required directories exist."""
        for directory in [self.data_dir, self.drafts_dir]:
            os.makedirs(directory, exist_ok=True)

    def _get_draft_path(self, draft_id: str) -> str:
        """Get the file path for a specific draft's data."""
        # Draft ids are uuid hex; anything else could escape the directory
        if not draft_id or not all(c.isalnum() or c in '-_' for c in draft_id):
            raise ValueError(f"Invalid draft id: {draft_id!r}")
        return os.path.join(self.drafts_dir, f"{draft_id}.json")

    def _json_serialize(self, obj: object) -> Union[str, dict]:
        """Custom serializer for objects that aren't JSON serializable."""
        if isinstance(obj, (UUID, date, datetime)):
            return str(obj)

        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json")

        raise TypeError(f"Type {type(obj)} not serializable")

    def _write_json(self, path: str, data: object) -> None:
        """Write atomically so a crash never leaves half a file."""
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(data, f, default=self._json_serialize, indent=2)
        os.replace(tmp_path, path)

    # Drafts

    def save_draft(self, draft: ReviewDraft) -> None:
        """Save a draft to storage."""
        with self._lock:
            self._write_json(self._get_draft_path(draft.id), draft.to_dict())

    def get_draft(self, draft_id: str) -> Optional[ReviewDraft]:
        """Retrieve a draft by ID."""
        try:
            file_path = self._get_draft_path(draft_id)
        except ValueError:
            return None

        if not os.path.exists(file_path):
            return None

        with open(file_path, "r") as f:
            try:
                return ReviewDraft.from_dict(json.load(f))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Failed to load draft {draft_id}: {str(e)}")
                return None

    def delete_draft(self, draft_id: str) -> bool:
        """Delete a draft by ID."""
        try:
            file_path = self._get_draft_path(draft_id)
        except ValueError:
            return False

        with self._lock:
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
        return False

    def list_drafts(self) -> List[ReviewDraft]:
        """All readable drafts, newest first."""
        drafts = []
        for filename in os.listdir(self.drafts_dir):
            if not filename.endswith(".json"):
                continue
            draft = self.get_draft(filename[:-len(".json")])
            if draft is not None:
                drafts.append(draft)
        return sorted(drafts, key=lambda d: d.created_at, reverse=True)

    # Inventory

    def _read_inventory(self) -> Dict:
        if not os.path.exists(self.inventory_path):
            return {"items": []}

        with open(self.inventory_path, "r") as f:
            try:
                return json.load(f)
            except json.JSONDecodeError:
                logger.error(f"Failed to decode inventory file {self.inventory_path}")
                raise

    def get_inventory_items(self) -> List[Dict]:
        """All stored inventory records."""
        return self._read_inventory()["items"]

    @staticmethod
    def _validate_item(item: NewInventoryItem) -> Optional[str]:
        if not item.name.strip():
            return "Item name is required"
        if item.price < 0:
            return "Price cannot be negative"
        if item.quantity <= 0:
            return "Quantity must be positive"
        if not item.category_id:
            return "Category is required"
        if not item.location_id:
            return "Location is required"
        return None

    def create_items(self, items: List[NewInventoryItem]) -> CreateItemsResult:
        """Append valid items to inventory.json; invalid ones are reported by index."""
        result = CreateItemsResult()
        with self._lock:
            data = self._read_inventory()
            for index, item in enumerate(items):
                reason = self._validate_item(item)
                if reason:
                    result.failed[index] = reason
                    continue

                record = item.model_dump()
                record["id"] = uuid4().hex
                record["created_at"] = datetime.now().isoformat()
                data["items"].append(record)
                result.created[index] = record["id"]

            if result.created:
                self._write_json(self.inventory_path, data)

        logger.info(f"Created {len(result.created)} inventory items, {len(result.failed)} failed")
        return result
