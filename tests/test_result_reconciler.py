from app.services.inventory_store import InventoryStore
from app.services.result_reconciler import matches_query, merge_highlights, reconcile


ITEM = {
    "name": "Áo Dài Cưới Đỏ",
    "category": "Áo Dài",
    "formattedId": "AD-000123",
    "tags": ["cưới", "lụa"],
}


def _hit(item_id, **source):
    return {"id": item_id, "source": {"id": str(item_id), **source}, "score": 3.5, "highlights": {}}


def test_matches_query_is_case_insensitive():
    assert matches_query(ITEM, "ÁO DÀI")
    assert matches_query(ITEM, "lụa")


def test_matches_query_ignores_diacritics():
    assert matches_query(ITEM, "ao dai cuoi")
    assert matches_query(ITEM, "lua")


def test_matches_query_accepts_product_id_without_dash():
    assert matches_query(ITEM, "ad000123")
    assert matches_query(ITEM, "AD-000123")


def test_matches_query_rejects_unrelated_text():
    assert not matches_query(ITEM, "quần jean")


def test_merge_highlights_folds_sub_fields():
    merged = merge_highlights(
        {
            "tags": ["<mark>cưới</mark>"],
            "tags.search": ["<mark>cưới</mark>", "<mark>lụa</mark>"],
            "name": ["<mark>Áo</mark> Dài"],
        }
    )
    assert merged == {
        "tags": ["<mark>cưới</mark>", "<mark>lụa</mark>"],
        "name": ["<mark>Áo</mark> Dài"],
    }


def test_reconcile_post_filters_loose_hits():
    hits = [
        _hit(1, name="Áo Dài Cưới", category="Áo Dài", formattedId="AD-000001", tags=[]),
        _hit(2, name="Quần Tây", category="Quần", formattedId="QU-000001", tags=[]),
    ]
    items = reconcile(hits, "áo dài")
    assert [item["id"] for item in items] == [1]
    assert items[0]["_score"] == 3.5


def test_reconcile_exposes_tag_highlights():
    hit = _hit(1, name="Váy", category="Văn Nghệ", formattedId="VN-000001", tags=["múa"])
    hit["highlights"] = {"tags.search": ["<mark>múa</mark>"]}
    item = reconcile([hit], "múa")[0]
    assert item["highlightedTags"] == ["<mark>múa</mark>"]
    assert item["_highlights"] == {"tags": ["<mark>múa</mark>"]}


def test_reconcile_prefers_database_image_and_tags(session, make_item):
    item = make_item("Giầy Cao Gót", "Giầy", tags=["tiệc"], image_url="data:image/png;base64,AAAA")
    hit = _hit(item["id"], name="Giầy Cao Gót", category="Giầy", formattedId="GI-000001", imageUrl=None, tags=[])

    reconciled = reconcile([hit], "giầy", InventoryStore(session))[0]

    assert reconciled["imageUrl"] == "data:image/png;base64,AAAA"
    assert reconciled["tags"] == ["tiệc"]


def test_reconcile_keeps_index_copy_when_database_has_nothing(session):
    hit = _hit(404, name="Áo Cũ", category="Áo", formattedId="AO-000404", imageUrl="/img/a.jpg", tags=["cũ"])
    reconciled = reconcile([hit], None, InventoryStore(session))[0]
    assert reconciled["imageUrl"] == "/img/a.jpg"
    assert reconciled["tags"] == ["cũ"]


def test_reconcile_trusts_empty_database_tags_and_image(session, make_item):
    item = make_item("Đầm Dạ Hội", "Đầm Dạ Hội", tags=[])
    hit = _hit(
        item["id"],
        name="Đầm Dạ Hội",
        category="Đầm Dạ Hội",
        formattedId="DH-000001",
        imageUrl="/img/old.jpg",
        tags=["hết mùa"],
    )

    reconciled = reconcile([hit], None, InventoryStore(session))[0]

    assert reconciled["tags"] == []
    assert reconciled["imageUrl"] is None
