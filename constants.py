import os
import re


DATABASE_URL = os.environ.get("RENTAL_DATABASE_URL", "sqlite:///rental_inventory.db")

# 32-byte AES key as 64 hex chars; the default only suits local development.
DEFAULT_ENCRYPTION_KEY = "5f1c3a9b7e2d4c6a8b0e1f2a3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d"
ENCRYPTION_KEY = os.environ.get("INVENTORY_ENCRYPTION_KEY", DEFAULT_ENCRYPTION_KEY)

CATEGORY_CODE_MAP = {
    "Áo Dài": "AD",
    "Áo": "AO",
    "Quần": "QU",
    "Văn Nghệ": "VN",
    "Đồ Tây": "DT",
    "Giầy": "GI",
    "Dụng Cụ": "DC",
    "Đầm Dạ Hội": "DH",
}
FALLBACK_CATEGORY = "XX"
FORMATTED_ID_DIGITS = 6

PRODUCT_ID_PATTERN = re.compile(r"^[A-Za-z]{1,3}-?[0-9]{4,6}$")

SEARCH_MODES = ("auto", "exact", "fuzzy", "broad")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
TYPESENSE_MAX_PER_PAGE = 250

HIGHLIGHT_PRE_TAG = "<mark>"
HIGHLIGHT_POST_TAG = "</mark>"

# Inline images are kept out of the search index and flagged instead.
INLINE_IMAGE_PREFIX = "data:"

# Substrings that mark a backend error as a lost connection rather than a bad request.
CONNECTION_ERROR_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "fetch failed",
    "other side closed",
    "econnrefused",
    "econnreset",
)

DEFAULT_CONFIG = {
    "ELASTICSEARCH_ENABLED": os.environ.get("ELASTICSEARCH_ENABLED", "0"),
    "ELASTICSEARCH_URL": os.environ.get("ELASTICSEARCH_URL", "http://localhost:9200"),
    "ELASTICSEARCH_INDEX": os.environ.get("ELASTICSEARCH_INDEX", "inventory_items"),
    "ELASTICSEARCH_USERNAME": os.environ.get("ELASTICSEARCH_USERNAME"),
    "ELASTICSEARCH_PASSWORD": os.environ.get("ELASTICSEARCH_PASSWORD"),
    "ELASTICSEARCH_API_KEY": os.environ.get("ELASTICSEARCH_API_KEY"),
    "ELASTICSEARCH_VERIFY_CERTS": os.environ.get("ELASTICSEARCH_VERIFY_CERTS", "0"),
    "ELASTICSEARCH_TIMEOUT": os.environ.get("ELASTICSEARCH_TIMEOUT", "30"),
    "ELASTICSEARCH_MAX_RETRIES": os.environ.get("ELASTICSEARCH_MAX_RETRIES", "3"),
    "TYPESENSE_ENABLED": os.environ.get("TYPESENSE_ENABLED", "0"),
    "TYPESENSE_HOST": os.environ.get("TYPESENSE_HOST", "localhost"),
    "TYPESENSE_PORT": os.environ.get("TYPESENSE_PORT", "8108"),
    "TYPESENSE_PROTOCOL": os.environ.get("TYPESENSE_PROTOCOL", "http"),
    "TYPESENSE_API_KEY": os.environ.get("TYPESENSE_API_KEY"),
    "TYPESENSE_COLLECTION": os.environ.get("TYPESENSE_COLLECTION", "inventory_items"),
    "TYPESENSE_TIMEOUT": os.environ.get("TYPESENSE_TIMEOUT", "10"),
    "TYPESENSE_NUM_RETRIES": os.environ.get("TYPESENSE_NUM_RETRIES", "3"),
    "SEARCH_SYNC_BACKENDS": os.environ.get("SEARCH_SYNC_BACKENDS", "elasticsearch,typesense"),
    "SEARCH_SYNC_MODE": os.environ.get("SEARCH_SYNC_MODE", "thread"),
    "SEARCH_SYNC_MAX_ATTEMPTS": os.environ.get("SEARCH_SYNC_MAX_ATTEMPTS", "3"),
    "SEARCH_REINDEX_BATCH_SIZE": os.environ.get("SEARCH_REINDEX_BATCH_SIZE", "100"),
    "SEARCH_REINDEX_BULK_SIZE": os.environ.get("SEARCH_REINDEX_BULK_SIZE", "200"),
    "SEARCH_REINDEX_DELAY": os.environ.get("SEARCH_REINDEX_DELAY", "0.5"),
    "SEARCH_AUTO_INDEX": os.environ.get("SEARCH_AUTO_INDEX", "0"),
}
