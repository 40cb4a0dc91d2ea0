from __future__ import annotations


VIETNAMESE_ANALYZER = "vietnamese_analyzer"
TAG_NORMALIZER = "tag_normalizer"


def _text_field(keyword_normalizer: str | None = None) -> dict:
    keyword = {"type": "keyword", "ignore_above": 256}
    if keyword_normalizer:
        keyword["normalizer"] = keyword_normalizer
    return {
        "type": "text",
        "analyzer": VIETNAMESE_ANALYZER,
        "fields": {
            "keyword": keyword,
            "search": {"type": "text", "analyzer": VIETNAMESE_ANALYZER},
        },
    }


def elasticsearch_index_body() -> dict:
    """Settings and mappings for the inventory index."""
    return {
        "settings": {
            "analysis": {
                "analyzer": {
                    VIETNAMESE_ANALYZER: {
                        "type": "custom",
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding"],
                    }
                },
                "normalizer": {
                    TAG_NORMALIZER: {
                        "type": "custom",
                        "filter": ["lowercase", "asciifolding"],
                    }
                },
            }
        },
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "formattedId": {"type": "keyword"},
                "name": _text_field(),
                "category": _text_field(),
                "tags": _text_field(TAG_NORMALIZER),
                "imageUrl": {"type": "keyword", "index": False},
                "hasImage": {"type": "boolean"},
                "createdAt": {"type": "date"},
                "updatedAt": {"type": "date"},
                "sizes": {
                    "type": "nested",
                    "properties": {
                        "title": {"type": "keyword"},
                        "quantity": {"type": "integer"},
                        "onHand": {"type": "integer"},
                        "price": {"type": "long"},
                    },
                },
            }
        },
    }


def typesense_collection_schema(name: str) -> dict:
    return {
        "name": name,
        "fields": [
            {"name": "formattedId", "type": "string"},
            {"name": "name", "type": "string", "facet": True, "sort": True, "infix": True},
            {"name": "nameNormalized", "type": "string", "optional": True, "infix": True},
            {"name": "category", "type": "string", "facet": True, "sort": True},
            {"name": "categoryNormalized", "type": "string", "optional": True},
            {"name": "tags", "type": "string[]", "facet": True, "optional": True, "infix": True},
            {"name": "sizes", "type": "object[]", "optional": True},
            {"name": "imageUrl", "type": "string", "optional": True, "index": False},
            {"name": "hasImage", "type": "bool", "facet": True},
            {"name": "createdAt", "type": "int64", "sort": True},
            {"name": "updatedAt", "type": "int64", "sort": True},
        ],
        "default_sorting_field": "updatedAt",
        "enable_nested_fields": True,
    }
