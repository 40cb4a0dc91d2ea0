"""Relevance planning for inventory search.

A query is turned into a backend-neutral :class:`QueryPlan`: an ordered list of
weighted clauses (one group per tier) plus gating parameters. The plan is then
compiled to an Elasticsearch request body or to Typesense search parameters,
so both backends rank by the same tiers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields as dataclass_fields

from constants import (
    DEFAULT_PAGE_SIZE,
    HIGHLIGHT_POST_TAG,
    HIGHLIGHT_PRE_TAG,
    MAX_PAGE_SIZE,
    SEARCH_MODES,
)
from helpers import looks_like_product_id, normalize_text, parse_int, product_id_variants


TIER_PRODUCT_ID = "product_id"
TIER_EXACT = "exact"
TIER_PHRASE = "phrase"
TIER_FUZZY = "fuzzy"
TIER_NORMALIZED = "normalized"
TIER_PARTIAL = "partial"

KIND_TERM = "term"
KIND_EXACT = "exact"
KIND_PHRASE = "phrase"
KIND_MATCH = "match"
KIND_WILDCARD = "wildcard"

ES_SOURCE_FIELDS = [
    "id",
    "formattedId",
    "name",
    "category",
    "imageUrl",
    "tags",
    "sizes",
    "createdAt",
    "updatedAt",
]

TYPESENSE_FIELD_MAP = {
    "formattedId": "formattedId",
    "name": "name",
    "name.keyword": "name",
    "name.search": "name",
    "tags": "tags",
    "tags.keyword": "tags",
    "tags.search": "tags",
    "category": "category",
    "category.keyword": "category",
}
TYPESENSE_NORMALIZED_FIELDS = {"name": "nameNormalized", "category": "categoryNormalized"}
TYPESENSE_INFIX_FIELDS = {"name", "nameNormalized", "tags"}
TYPESENSE_MAX_TYPOS = 2
TYPESENSE_MAX_WEIGHT = 127


@dataclass
class SearchQuery:
    text: str = ""
    mode: str = "auto"
    category: str | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        self.text = (self.text or "").strip()
        self.mode = self.mode if self.mode in SEARCH_MODES else "auto"
        self.category = (self.category or "").strip() or None
        self.page = max(int(self.page or 1), 1)
        self.limit = min(max(int(self.limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    @classmethod
    def from_args(cls, args) -> "SearchQuery":
        return cls(
            text=args.get("q") or "",
            mode=(args.get("mode") or "auto").strip().lower(),
            category=args.get("category"),
            page=parse_int(args.get("page"), 1),
            limit=parse_int(args.get("limit"), DEFAULT_PAGE_SIZE),
        )

    @property
    def words(self) -> list[str]:
        return self.text.lower().split()

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class GatingPolicy:
    """Score and coverage thresholds per mode.

    The defaults are tuned by hand; override any of them through the
    ``SEARCH_GATING`` config mapping.
    """

    exact_min_score: float = 5.0
    exact_minimum_should_match: str = "80%"
    fuzzy_min_score: float = 0.5
    broad_min_score: float = 0.1
    auto_short_word_min_score: float = 2.0
    auto_word_min_score: float = 0.5
    auto_multi_word_min_score: float = 1.0
    short_word_length: int = 4
    two_word_coverage: float = 0.5
    multi_word_coverage: float = 0.6
    fuzzy_partial_min_length: int = 3
    auto_partial_min_length: int = 4

    @classmethod
    def from_mapping(cls, values) -> "GatingPolicy":
        known = {item.name for item in dataclass_fields(cls)}
        return cls(**{key: value for key, value in (values or {}).items() if key in known})


@dataclass(frozen=True)
class Clause:
    tier: str
    kind: str
    text: str
    fields: tuple[tuple[str, float], ...]
    fuzziness: int = 0
    prefix_length: int = 0


@dataclass
class QueryPlan:
    query: SearchQuery
    clauses: list[Clause] = field(default_factory=list)
    min_score: float | None = None
    minimum_should_match: int | str = 1
    num_typos: int = 0
    product_id: bool = False

    @property
    def has_text(self) -> bool:
        return bool(self.query.text)

    @property
    def tiers(self) -> list[str]:
        seen = []
        for clause in self.clauses:
            if clause.tier not in seen:
                seen.append(clause.tier)
        return seen

    @property
    def requires_all_words(self) -> bool:
        words = len(self.query.words)
        if isinstance(self.minimum_should_match, str):
            return True
        return words > 1 and self.minimum_should_match >= words


def fuzziness_for(query: SearchQuery, policy: GatingPolicy) -> tuple[int, int]:
    """Edit distance and prefix length used by the fuzzy tier."""
    if query.mode == "exact":
        return 0, 0
    if query.mode == "fuzzy":
        return 2, 1
    if query.mode == "broad":
        return 2, 0
    words = query.words
    if len(words) == 1 and len(words[0]) <= policy.short_word_length:
        return 0, 0
    return 1, 0


def gating_for(query: SearchQuery, policy: GatingPolicy) -> tuple[float | None, int | str]:
    """Minimum score and word coverage for a free-text query.

    Coverage is applied to the words of the text-matching tiers. A category
    filter makes the request mandatory-scoped, so no gating is applied.
    """
    if query.category:
        return None, 1
    words = query.words
    count = len(words)
    if query.mode == "exact":
        return policy.exact_min_score, policy.exact_minimum_should_match
    if query.mode == "fuzzy":
        return policy.fuzzy_min_score, 1
    if query.mode == "broad":
        return policy.broad_min_score, 1
    if count <= 1:
        if words and len(words[0]) <= policy.short_word_length:
            return policy.auto_short_word_min_score, 1
        return policy.auto_word_min_score, 1
    if count == 2:
        coverage = max(2, math.ceil(count * policy.two_word_coverage))
    else:
        coverage = max(3, math.ceil(count * policy.multi_word_coverage))
    return policy.auto_multi_word_min_score, min(coverage, count)


def _partial_enabled(query: SearchQuery, policy: GatingPolicy) -> bool:
    length = len(query.text)
    if query.mode == "broad":
        return True
    if query.mode == "fuzzy":
        return length >= policy.fuzzy_partial_min_length
    if query.mode == "auto":
        return length >= policy.auto_partial_min_length
    return False


def build_plan(query: SearchQuery, policy: GatingPolicy | None = None) -> QueryPlan:
    policy = policy or GatingPolicy()
    plan = QueryPlan(query=query)
    text = query.text
    if not text:
        return plan

    clauses = plan.clauses
    if looks_like_product_id(text):
        plan.product_id = True
        variants = product_id_variants(text)
        for variant in variants:
            clauses.append(Clause(TIER_PRODUCT_ID, KIND_TERM, variant, (("formattedId", 100.0),)))
        clauses.append(
            Clause(TIER_PRODUCT_ID, KIND_WILDCARD, f"*{variants[0]}*", (("formattedId", 50.0),))
        )

    clauses.append(
        Clause(
            TIER_EXACT,
            KIND_EXACT,
            text,
            (("name.keyword", 20.0), ("tags.keyword", 15.0), ("category.keyword", 10.0)),
        )
    )
    if len(query.words) > 1:
        clauses.append(Clause(TIER_PHRASE, KIND_PHRASE, text, (("name", 12.0), ("tags", 8.0))))

    fuzziness, prefix_length = fuzziness_for(query, policy)
    if plan.product_id:
        fuzziness, prefix_length = 0, 0
    clauses.append(
        Clause(
            TIER_FUZZY,
            KIND_MATCH,
            text,
            (
                ("name", 6.0),
                ("name.search", 5.0),
                ("tags", 5.0),
                ("tags.search", 4.0),
                ("category", 3.0),
            ),
            fuzziness=fuzziness,
            prefix_length=prefix_length,
        )
    )

    normalized = normalize_text(text)
    if normalized != text and len(normalized) >= 3:
        clauses.append(
            Clause(
                TIER_NORMALIZED,
                KIND_MATCH,
                normalized,
                (("name", 4.0), ("tags", 3.0), ("category", 2.0)),
            )
        )

    if not plan.product_id and _partial_enabled(query, policy):
        clauses.append(
            Clause(
                TIER_PARTIAL,
                KIND_WILDCARD,
                f"*{text}*",
                (("name.keyword", 2.0), ("tags.keyword", 2.0)),
            )
        )

    plan.num_typos = fuzziness
    plan.min_score, plan.minimum_should_match = gating_for(query, policy)
    if plan.product_id:
        plan.minimum_should_match = 1
    return plan


def _weighted(fields) -> list[str]:
    return [f"{name}^{boost:g}" for name, boost in fields]


def _es_clause(clause: Clause, minimum_should_match) -> dict:
    if clause.kind == KIND_TERM:
        name, boost = clause.fields[0]
        return {"term": {name: {"value": clause.text, "boost": boost}}}
    if clause.kind == KIND_WILDCARD:
        wildcards = [
            {"wildcard": {name: {"value": clause.text, "boost": boost, "case_insensitive": True}}}
            for name, boost in clause.fields
        ]
        if len(wildcards) == 1:
            return wildcards[0]
        return {"bool": {"should": wildcards, "minimum_should_match": 1}}
    if clause.kind in (KIND_EXACT, KIND_PHRASE):
        return {
            "multi_match": {
                "query": clause.text,
                "type": "phrase",
                "fields": _weighted(clause.fields),
            }
        }
    body = {
        "query": clause.text,
        "type": "best_fields",
        "fields": _weighted(clause.fields),
        "fuzziness": str(clause.fuzziness),
        "minimum_should_match": str(minimum_should_match),
    }
    if clause.fuzziness:
        body["prefix_length"] = clause.prefix_length
    return {"multi_match": body}


def compile_elasticsearch(plan: QueryPlan) -> dict:
    query = plan.query
    body = {
        "from": query.offset,
        "size": query.limit,
        "track_total_hits": True,
        "_source": ES_SOURCE_FIELDS,
    }
    must = []
    if query.category:
        must.append({"term": {"category.keyword": query.category}})
    should = [_es_clause(clause, plan.minimum_should_match) for clause in plan.clauses]

    if must or should:
        bool_query = {}
        if must:
            bool_query["must"] = must
        if should:
            bool_query["should"] = should
            bool_query["minimum_should_match"] = 1
        body["query"] = {"bool": bool_query}
    else:
        body["query"] = {"match_all": {}}

    if plan.min_score is not None:
        body["min_score"] = plan.min_score

    if plan.has_text:
        body["sort"] = [{"_score": {"order": "desc"}}, {"updatedAt": {"order": "desc"}}]
        body["highlight"] = {
            "fields": {
                "name": {"number_of_fragments": 1},
                "name.search": {"number_of_fragments": 1},
                "category": {"number_of_fragments": 1},
                "tags": {"number_of_fragments": 3},
                "tags.search": {"number_of_fragments": 3},
            },
            "pre_tags": [HIGHLIGHT_PRE_TAG],
            "post_tags": [HIGHLIGHT_POST_TAG],
        }
    else:
        body["sort"] = [{"updatedAt": {"order": "desc"}}]
    return body


def _typesense_weights(plan: QueryPlan) -> dict[str, float]:
    weights: dict[str, float] = {}
    for clause in plan.clauses:
        for name, boost in clause.fields:
            if clause.tier == TIER_NORMALIZED:
                target = TYPESENSE_NORMALIZED_FIELDS.get(TYPESENSE_FIELD_MAP.get(name, ""))
            else:
                target = TYPESENSE_FIELD_MAP.get(name)
            if target:
                weights[target] = max(weights.get(target, 0.0), boost)
    # diacritic-free copies are always searchable at a low weight
    for target in TYPESENSE_NORMALIZED_FIELDS.values():
        weights.setdefault(target, 1.0)
    return weights


def escape_filter_value(value: str) -> str:
    return "`" + value.replace("`", "") + "`"


def compile_typesense(plan: QueryPlan) -> dict:
    query = plan.query
    params = {
        "q": query.text or "*",
        "page": query.page,
        "per_page": query.limit,
        "facet_by": "category",
    }
    if query.category:
        params["filter_by"] = f"category:={escape_filter_value(query.category)}"

    if not plan.has_text:
        params["query_by"] = "name,category,tags,formattedId"
        params["sort_by"] = "updatedAt:desc"
        return params

    weights = sorted(_typesense_weights(plan).items(), key=lambda item: item[1], reverse=True)
    query_by = [name for name, _ in weights]
    partial = TIER_PARTIAL in plan.tiers
    params["query_by"] = ",".join(query_by)
    params["query_by_weights"] = ",".join(
        str(max(1, min(int(round(weight)), TYPESENSE_MAX_WEIGHT))) for _, weight in weights
    )
    params["num_typos"] = 0 if plan.product_id else min(plan.num_typos, TYPESENSE_MAX_TYPOS)
    strict = plan.product_id or query.mode == "exact"
    params["prefix"] = ",".join("false" if strict else "true" for _ in query_by)
    params["infix"] = ",".join(
        "fallback" if partial and name in TYPESENSE_INFIX_FIELDS else "off" for name in query_by
    )
    if plan.requires_all_words:
        params["drop_tokens_threshold"] = 0
    params["sort_by"] = "_text_match:desc,updatedAt:desc"
    params["highlight_fields"] = "name,category,tags"
    params["highlight_start_tag"] = HIGHLIGHT_PRE_TAG
    params["highlight_end_tag"] = HIGHLIGHT_POST_TAG
    return params
