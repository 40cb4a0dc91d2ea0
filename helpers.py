import math
import re
import unicodedata

from constants import (
    CATEGORY_CODE_MAP,
    FALLBACK_CATEGORY,
    FORMATTED_ID_DIGITS,
    PRODUCT_ID_PATTERN,
)


COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
NON_ALNUM = re.compile(r"[^0-9A-Za-z]")


def parse_bool(value):
    if value is None:
        return False
    value = str(value).strip().lower()
    return value in {"1", "true", "có", "yes", "y", "on", "t", "x"}


def parse_int(value, default=None):
    if value in (None, "", " "):
        return default
    try:
        return int(float(str(value).replace(",", ".")))
    except (ValueError, TypeError):
        return default


def parse_float(value, default=None):
    if value in (None, "", " "):
        return default
    try:
        return float(str(value).replace(",", "."))
    except (ValueError, TypeError):
        return default


def _fold_d(text: str) -> str:
    return text.replace("Đ", "D").replace("đ", "d")


def normalize_text(value: str | None) -> str:
    """Lowercase, drop Vietnamese diacritics and fold đ to d."""
    text = str(value or "").lower()
    text = unicodedata.normalize("NFD", text)
    text = COMBINING_MARKS.sub("", text)
    return _fold_d(text)


def category_code(category: str | None) -> str:
    code = CATEGORY_CODE_MAP.get(category or "")
    if code:
        return code
    initials = "".join(word[:1] for word in (category or FALLBACK_CATEGORY).split(" "))
    initials = unicodedata.normalize("NFD", _fold_d(initials))
    initials = COMBINING_MARKS.sub("", initials)
    return initials.upper()[:2]


def format_id(category: str | None, counter: int) -> str:
    return f"{category_code(category)}-{int(counter or 0):0{FORMATTED_ID_DIGITS}d}"


def category_code_collisions(categories) -> dict[str, list[str]]:
    """Group category names that derive the same two-letter code.

    Only codes shared by two or more distinct categories are returned.
    """
    by_code: dict[str, list[str]] = {}
    for category in categories:
        names = by_code.setdefault(category_code(category), [])
        if category not in names:
            names.append(category)
    return {code: names for code, names in by_code.items() if len(names) > 1}


def alnum_upper(value: str | None) -> str:
    return NON_ALNUM.sub("", str(value or "")).upper()


def looks_like_product_id(value: str | None) -> bool:
    return bool(value) and bool(PRODUCT_ID_PATTERN.match(value.strip()))


def product_id_variants(value: str) -> list[str]:
    """Uppercase forms of a product id: dashed first, then undashed, then as typed."""
    raw = value.strip().upper()
    compact = raw.replace("-", "")
    match = re.match(r"^([A-Z]+)([0-9]+)$", compact)
    dashed = f"{match.group(1)}-{match.group(2)}" if match else raw
    variants = []
    for variant in (dashed, compact, raw):
        if variant not in variants:
            variants.append(variant)
    return variants


def total_pages(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return int(math.ceil(total / limit))
