from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from helpers import alnum_upper, normalize_text


def matches_query(item: dict, query: str) -> bool:
    """True when the query text occurs in the item's name, id, category or a tag.

    Case and Vietnamese diacritics are ignored, and product ids also match
    with or without the dash.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return True
    folded_needle = normalize_text(needle)
    values = [item.get("name"), item.get("category"), item.get("formattedId")]
    values.extend(item.get("tags") or [])
    for value in values:
        text = str(value or "").lower()
        if needle in text or (folded_needle and folded_needle in normalize_text(text)):
            return True
    id_needle = alnum_upper(needle)
    return bool(id_needle) and id_needle in alnum_upper(item.get("formattedId"))


def merge_highlights(highlights: dict) -> dict[str, list[str]]:
    """Fold sub-field highlights (``tags.search``) into their base field."""
    merged: dict[str, list[str]] = {}
    for field_name, fragments in (highlights or {}).items():
        base = field_name.split(".", 1)[0]
        bucket = merged.setdefault(base, [])
        for fragment in fragments or []:
            if fragment not in bucket:
                bucket.append(fragment)
    return merged


def _authoritative_fields(store, item_ids):
    if store is None or not item_ids:
        return {}, {}
    try:
        return store.get_image_urls(item_ids), store.get_tags(item_ids)
    except SQLAlchemyError as exc:
        current_app.logger.warning("Could not load image URLs and tags for search hits: %s", exc)
        store.session.rollback()
        return {}, {}


def reconcile(hits: list[dict], query: str | None = None, store=None) -> list[dict]:
    """Turn backend hits into items, trusting the database for images and tags.

    Hits that fail :func:`matches_query` are dropped; callers subtract them
    from the backend's total.
    """
    item_ids = [hit["id"] for hit in hits if hit.get("id") is not None]
    image_urls, tags_by_item = _authoritative_fields(store, item_ids)

    items = []
    for hit in hits:
        item_id = hit.get("id")
        source = hit.get("source") or {}
        item = {
            "id": item_id,
            "formattedId": source.get("formattedId"),
            "name": source.get("name"),
            "category": source.get("category"),
            "imageUrl": source.get("imageUrl"),
            "tags": list(source.get("tags") or []),
            "sizes": list(source.get("sizes") or []),
            "createdAt": source.get("createdAt"),
            "updatedAt": source.get("updatedAt"),
            "_score": hit.get("score") or 0,
        }
        # a row that still exists is authoritative, even when its image or tags are empty
        if item_id in image_urls:
            item["imageUrl"] = image_urls[item_id]
            item["tags"] = list(tags_by_item.get(item_id) or [])
        if query and not matches_query(item, query):
            continue
        highlights = merge_highlights(hit.get("highlights"))
        if highlights:
            item["_highlights"] = highlights
            if highlights.get("tags"):
                item["highlightedTags"] = highlights["tags"]
        items.append(item)
    return items
