import re

from constants import CATEGORY_CODE_MAP
from helpers import (
    alnum_upper,
    category_code,
    category_code_collisions,
    format_id,
    looks_like_product_id,
    normalize_text,
    parse_bool,
    parse_int,
    product_id_variants,
    total_pages,
)


def test_normalize_text_strips_vietnamese_marks():
    assert normalize_text("Áo Dài Cưới") == "ao dai cuoi"
    assert normalize_text("Đầm Dạ Hội") == "dam da hoi"
    assert normalize_text("ĐỒ TÂY") == "do tay"


def test_normalize_text_handles_empty_values():
    assert normalize_text(None) == ""
    assert normalize_text("") == ""


def test_normalize_text_is_idempotent():
    once = normalize_text("Giầy Cao Gót Đỏ")
    assert normalize_text(once) == once


def test_category_code_uses_known_table():
    assert category_code("Áo Dài") == "AD"
    assert category_code("Đầm Dạ Hội") == "DH"
    assert category_code("Giầy") == "GI"


def test_category_code_derives_initials_for_unknown_categories():
    assert category_code("Phụ Kiện") == "PK"
    assert category_code("Đai Lưng") == "DL"
    assert category_code("mũ") == "M"


def test_category_code_fallback_for_missing_category():
    assert category_code(None) == "X"
    assert format_id(None, 3) == "X-000003"


def test_format_id_pads_counter():
    assert format_id("Áo Dài", 1) == "AD-000001"
    assert format_id("Quần", 123456) == "QU-123456"
    assert format_id("Phụ Kiện", 42) == "PK-000042"


def test_category_code_collisions_flags_shared_codes():
    collisions = category_code_collisions(["Phụ Kiện", "Phim Kinh Dị", "Áo Dài", "Phụ Kiện"])
    assert collisions == {"PK": ["Phụ Kiện", "Phim Kinh Dị"]}


def test_category_code_collisions_ignores_unique_codes():
    assert category_code_collisions(["Áo Dài", "Quần", "Giầy"]) == {}


def test_product_id_detection():
    assert looks_like_product_id("AD-000123")
    assert looks_like_product_id("ad000123")
    assert looks_like_product_id("X-0001")
    assert not looks_like_product_id("áo dài")
    assert not looks_like_product_id("AD-12")
    assert not looks_like_product_id("")


def test_product_id_variants_put_dashed_form_first():
    assert product_id_variants("ad000123") == ["AD-000123", "AD000123"]
    assert product_id_variants("AD-000123") == ["AD-000123", "AD000123"]


def test_alnum_upper_drops_separators():
    assert alnum_upper("ad-000 123") == "AD000123"
    assert alnum_upper(None) == ""


def test_parse_helpers():
    assert parse_bool("true") and parse_bool("1") and not parse_bool("0")
    assert parse_int("12") == 12
    assert parse_int("", 5) == 5
    assert parse_int("abc", 7) == 7


def test_total_pages():
    assert total_pages(0, 20) == 0
    assert total_pages(41, 20) == 3
    assert total_pages(10, 0) == 0


def test_normalize_text_examples():
    assert normalize_text("Gấm") == "gam"
    assert normalize_text("Đà Nẵng") == "da nang"


def test_known_categories_produce_two_letter_ids():
    for category in CATEGORY_CODE_MAP:
        assert re.match(r"^[A-Z]{2}-\d{6}$", format_id(category, 831))
