from __future__ import annotations

from flask import current_app, g
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from encryption import decrypt_field, decrypt_int, encrypt
from helpers import format_id
from models import CategoryCounter, InventoryItem, InventorySize, Tag, inventory_tags


def _isoformat(value):
    return value.isoformat() if value is not None else None


def build_record(item, sizes: list[dict] | None = None, tags: list[str] | None = None) -> dict:
    """Decrypted view of an inventory row plus its sizes and tag names."""
    category = decrypt_field(item.category)
    return {
        "id": item.id,
        "formattedId": format_id(category, item.category_counter),
        "name": decrypt_field(item.name),
        "category": category,
        "categoryCounter": item.category_counter,
        "imageUrl": item.image_url,
        "tags": list(tags or []),
        "sizes": list(sizes or []),
        "createdAt": _isoformat(item.created_at),
        "updatedAt": _isoformat(item.updated_at),
    }


class InventoryStore:
    def __init__(self, session=None):
        self.session = session or getattr(g, "db", None)
        if self.session is None:
            raise RuntimeError("Database session is required for inventory access")

    def get_item(self, item_id: int) -> InventoryItem | None:
        return self.session.get(InventoryItem, item_id)

    def count_items(self) -> int:
        return self.session.query(InventoryItem.id).count()

    def get_sizes(self, item_ids) -> dict[int, list[dict]]:
        ids = list(item_ids)
        result: dict[int, list[dict]] = {item_id: [] for item_id in ids}
        if not ids:
            return result
        rows = (
            self.session.query(InventorySize)
            .filter(InventorySize.item_id.in_(ids))
            .order_by(InventorySize.id)
            .all()
        )
        for size in rows:
            result.setdefault(size.item_id, []).append(
                {
                    "title": decrypt_field(size.title),
                    "quantity": decrypt_int(size.quantity),
                    "onHand": decrypt_int(size.on_hand),
                    "price": decrypt_int(size.price),
                }
            )
        return result

    def get_tags(self, item_ids) -> dict[int, list[str]]:
        ids = list(item_ids)
        result: dict[int, list[str]] = {item_id: [] for item_id in ids}
        if not ids:
            return result
        rows = (
            self.session.query(inventory_tags.c.item_id, Tag.name)
            .join(Tag, Tag.id == inventory_tags.c.tag_id)
            .filter(inventory_tags.c.item_id.in_(ids))
            .order_by(Tag.id)
            .all()
        )
        for item_id, name in rows:
            result.setdefault(item_id, []).append(decrypt_field(name))
        return result

    def _safe_tags(self, item_ids) -> dict[int, list[str]]:
        try:
            return self.get_tags(item_ids)
        except SQLAlchemyError as exc:
            current_app.logger.warning("Tag lookup failed, indexing without tags: %s", exc)
            self.session.rollback()
            return {}

    def get_image_urls(self, item_ids) -> dict[int, str | None]:
        ids = list(item_ids)
        if not ids:
            return {}
        rows = (
            self.session.query(InventoryItem.id, InventoryItem.image_url)
            .filter(InventoryItem.id.in_(ids))
            .all()
        )
        return {item_id: image_url for item_id, image_url in rows}

    def records_for(self, items) -> list[dict]:
        items = list(items)
        ids = [item.id for item in items]
        sizes = self.get_sizes(ids)
        tags = self._safe_tags(ids)
        return [build_record(item, sizes.get(item.id), tags.get(item.id)) for item in items]

    def load_record(self, item_id: int) -> dict | None:
        item = self.get_item(item_id)
        if item is None:
            return None
        return self.records_for([item])[0]

    def load_records(self, item_ids) -> list[dict]:
        """Records for the given ids, in the given order; unknown ids are skipped."""
        ids = [int(item_id) for item_id in item_ids]
        if not ids:
            return []
        items = self.session.query(InventoryItem).filter(InventoryItem.id.in_(ids)).all()
        by_id = {record["id"]: record for record in self.records_for(items)}
        return [by_id[item_id] for item_id in ids if item_id in by_id]

    def iter_batches(self, batch_size: int):
        last_id = 0
        while True:
            batch = (
                self.session.query(InventoryItem)
                .filter(InventoryItem.id > last_id)
                .order_by(InventoryItem.id)
                .limit(batch_size)
                .all()
            )
            if not batch:
                break
            yield batch
            last_id = batch[-1].id

    def list_records(
        self,
        categories: list[str] | None = None,
        has_image: bool | None = None,
        order: str = "newest",
    ) -> list[dict]:
        query = self.session.query(InventoryItem)
        if categories:
            query = query.filter(
                InventoryItem.category.in_([encrypt(category) for category in categories])
            )
        if has_image is True:
            query = query.filter(InventoryItem.image_url.isnot(None), InventoryItem.image_url != "")
        elif has_image is False:
            query = query.filter(or_(InventoryItem.image_url.is_(None), InventoryItem.image_url == ""))
        if order == "oldest":
            query = query.order_by(InventoryItem.created_at.asc(), InventoryItem.id.asc())
        else:
            query = query.order_by(InventoryItem.created_at.desc(), InventoryItem.id.desc())
        return self.records_for(query.all())

    def _increment_counter(self, key: str) -> int | None:
        result = self.session.execute(
            update(CategoryCounter)
            .where(CategoryCounter.category == key)
            .values(counter=CategoryCounter.counter + 1)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        # the UPDATE holds the row lock until commit, so this read sees our own increment
        return self.session.execute(
            select(CategoryCounter.counter).where(CategoryCounter.category == key)
        ).scalar_one()

    def next_category_counter(self, category: str) -> int:
        """Reserve the next per-category number; numbers are never handed out twice."""
        key = encrypt(category)
        value = self._increment_counter(key)
        if value is not None:
            return value
        try:
            with self.session.begin_nested():
                self.session.add(CategoryCounter(category=key, counter=1))
            return 1
        except IntegrityError:
            # another writer created the row first
            value = self._increment_counter(key)
            if value is None:
                raise
            return value

    def known_categories(self) -> list[str]:
        rows = self.session.query(CategoryCounter.category).all()
        return sorted({decrypt_field(category) for (category,) in rows})

    def get_or_create_tag(self, name: str) -> Tag:
        key = encrypt(name)
        tag = self.session.query(Tag).filter(Tag.name == key).first()
        if tag is None:
            tag = Tag(name=key)
            self.session.add(tag)
            self.session.flush()
        return tag
