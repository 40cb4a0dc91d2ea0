from __future__ import annotations

from datetime import datetime

from flask import current_app, g

from encryption import encrypt
from helpers import category_code_collisions, parse_int
from models import InventoryItem, InventorySize
from app.services.inventory_store import InventoryStore
from app.services.search_sync import get_sync_queue


class InventoryService:
    """Inventory writes. Search sync is queued after each commit and never blocks it."""

    def __init__(self, session=None):
        self.session = session or getattr(g, "db", None)
        if self.session is None:
            raise RuntimeError("Database session is required for inventory writes")
        self.store = InventoryStore(self.session)

    @staticmethod
    def _clean_payload(payload: dict) -> dict:
        name = str(payload.get("name") or "").strip()
        category = str(payload.get("category") or "").strip()
        if not name:
            raise ValueError("Name is required")
        if not category:
            raise ValueError("Category is required")
        sizes = []
        for size in payload.get("sizes") or []:
            if not isinstance(size, dict):
                raise ValueError("Each size must be an object")
            sizes.append(
                {
                    "title": str(size.get("title") or "").strip(),
                    "quantity": parse_int(size.get("quantity"), 0),
                    "onHand": parse_int(size.get("onHand"), parse_int(size.get("quantity"), 0)),
                    "price": parse_int(size.get("price"), 0),
                }
            )
        tags = []
        for tag in payload.get("tags") or []:
            tag = str(tag or "").strip()
            if tag and tag not in tags:
                tags.append(tag)
        return {
            "name": name,
            "category": category,
            "imageUrl": payload.get("imageUrl") or None,
            "sizes": sizes,
            "tags": tags,
        }

    def _apply(self, item: InventoryItem, data: dict):
        item.name = encrypt(data["name"])
        item.category = encrypt(data["category"])
        item.image_url = data["imageUrl"]
        item.sizes = [
            InventorySize(
                title=encrypt(size["title"]),
                quantity=encrypt(size["quantity"]),
                on_hand=encrypt(size["onHand"]),
                price=encrypt(size["price"]),
            )
            for size in data["sizes"]
        ]
        item.tags = [self.store.get_or_create_tag(tag) for tag in data["tags"]]

    def _warn_code_collision(self, category: str):
        known = self.store.known_categories()
        if category in known:
            return
        for code, names in category_code_collisions(known + [category]).items():
            if category in names:
                current_app.logger.warning(
                    "Category %r derives id code %s already used by %s",
                    category,
                    code,
                    ", ".join(name for name in names if name != category),
                )

    def list_items(self) -> list[dict]:
        return self.store.list_records(order="newest")

    def get_item(self, item_id: int) -> dict | None:
        return self.store.load_record(item_id)

    def create_item(self, payload: dict) -> dict:
        data = self._clean_payload(payload)
        self._warn_code_collision(data["category"])
        item = InventoryItem(category_counter=self.store.next_category_counter(data["category"]))
        self._apply(item, data)
        self.session.add(item)
        self.session.commit()
        get_sync_queue().on_item_created(item.id)
        return self.store.load_record(item.id)

    def update_item(self, item_id: int, payload: dict) -> dict | None:
        item = self.store.get_item(item_id)
        if item is None:
            return None
        data = self._clean_payload(payload)
        self._apply(item, data)
        item.updated_at = datetime.utcnow()
        self.session.commit()
        get_sync_queue().on_item_updated(item.id)
        return self.store.load_record(item.id)

    def delete_item(self, item_id: int) -> bool:
        item = self.store.get_item(item_id)
        if item is None:
            return False
        self.session.delete(item)
        self.session.commit()
        get_sync_queue().on_item_deleted(item_id)
        return True
