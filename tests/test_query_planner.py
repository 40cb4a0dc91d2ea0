from app.services.query_planner import (
    TIER_EXACT,
    TIER_FUZZY,
    TIER_NORMALIZED,
    TIER_PARTIAL,
    TIER_PHRASE,
    TIER_PRODUCT_ID,
    GatingPolicy,
    SearchQuery,
    build_plan,
    compile_elasticsearch,
    compile_typesense,
)


def _clause(plan, tier):
    return next(clause for clause in plan.clauses if clause.tier == tier)


def test_search_query_clamps_paging_and_mode():
    query = SearchQuery(text="  áo  ", mode="weird", page=0, limit=500)
    assert query.text == "áo"
    assert query.mode == "auto"
    assert query.page == 1
    assert query.limit == 100


def test_search_query_from_args():
    query = SearchQuery.from_args({"q": "quần", "mode": "FUZZY", "page": "3", "limit": "10", "category": " Quần "})
    assert (query.text, query.mode, query.page, query.limit, query.category) == ("quần", "fuzzy", 3, 10, "Quần")
    assert query.offset == 20


def test_empty_query_has_no_clauses():
    plan = build_plan(SearchQuery())
    assert plan.clauses == []
    body = compile_elasticsearch(plan)
    assert body["query"] == {"match_all": {}}
    assert body["sort"] == [{"updatedAt": {"order": "desc"}}]


def test_short_single_word_disables_fuzziness_and_raises_floor():
    plan = build_plan(SearchQuery(text="áo"))
    assert _clause(plan, TIER_FUZZY).fuzziness == 0
    assert plan.min_score == 2.0
    assert plan.minimum_should_match == 1
    assert TIER_PARTIAL not in plan.tiers
    # "ao" is too short for the diacritic-free tier
    assert TIER_NORMALIZED not in plan.tiers


def test_multi_word_query_requires_every_word():
    plan = build_plan(SearchQuery(text="áo dài cưới"))
    assert plan.tiers == [TIER_EXACT, TIER_PHRASE, TIER_FUZZY, TIER_NORMALIZED, TIER_PARTIAL]
    assert plan.minimum_should_match == 3
    assert plan.min_score == 1.0
    assert plan.requires_all_words
    normalized = _clause(plan, TIER_NORMALIZED)
    assert normalized.text == "ao dai cuoi"


def test_two_word_query_coverage():
    plan = build_plan(SearchQuery(text="đầm dạ"))
    assert plan.minimum_should_match == 2


def test_product_id_query_matches_formatted_id_first():
    plan = build_plan(SearchQuery(text="ad000123"))
    assert plan.product_id
    assert plan.tiers[0] == TIER_PRODUCT_ID
    terms = [clause.text for clause in plan.clauses if clause.tier == TIER_PRODUCT_ID]
    assert terms == ["AD-000123", "AD000123", "*AD-000123*"]
    assert plan.minimum_should_match == 1
    assert _clause(plan, TIER_FUZZY).fuzziness == 0
    assert TIER_PARTIAL not in plan.tiers


def test_category_filter_disables_gating():
    plan = build_plan(SearchQuery(text="áo dài", category="Áo Dài"))
    assert plan.min_score is None
    assert plan.minimum_should_match == 1
    body = compile_elasticsearch(plan)
    assert "min_score" not in body
    assert body["query"]["bool"]["must"] == [{"term": {"category.keyword": "Áo Dài"}}]


def test_exact_mode_is_stricter_than_broad_mode():
    exact = build_plan(SearchQuery(text="váy cưới", mode="exact"))
    broad = build_plan(SearchQuery(text="váy cưới", mode="broad"))
    assert set(exact.tiers) <= set(broad.tiers)
    assert exact.min_score > broad.min_score
    assert exact.minimum_should_match == "80%"
    assert broad.minimum_should_match == 1
    assert _clause(exact, TIER_FUZZY).fuzziness == 0
    assert _clause(broad, TIER_FUZZY).fuzziness == 2


def test_fuzzy_mode_enables_partial_from_three_characters():
    assert TIER_PARTIAL in build_plan(SearchQuery(text="vay", mode="fuzzy")).tiers
    assert TIER_PARTIAL not in build_plan(SearchQuery(text="vay")).tiers


def test_gating_policy_overrides():
    policy = GatingPolicy.from_mapping({"auto_short_word_min_score": 3.5, "unknown": 1})
    plan = build_plan(SearchQuery(text="áo"), policy)
    assert plan.min_score == 3.5


def test_compile_elasticsearch_body():
    plan = build_plan(SearchQuery(text="áo dài cưới", page=2, limit=10))
    body = compile_elasticsearch(plan)
    assert body["from"] == 10
    assert body["size"] == 10
    assert body["min_score"] == 1.0
    should = body["query"]["bool"]["should"]
    assert body["query"]["bool"]["minimum_should_match"] == 1
    assert len(should) == len(plan.clauses)
    exact = should[0]["multi_match"]
    assert exact["type"] == "phrase"
    assert exact["fields"] == ["name.keyword^20", "tags.keyword^15", "category.keyword^10"]
    fuzzy = should[2]["multi_match"]
    assert fuzzy["minimum_should_match"] == "3"
    assert fuzzy["fuzziness"] == "1"
    assert body["sort"][0] == {"_score": {"order": "desc"}}
    assert "tags.search" in body["highlight"]["fields"]


def test_compile_elasticsearch_product_id_terms():
    body = compile_elasticsearch(build_plan(SearchQuery(text="AD-000123")))
    should = body["query"]["bool"]["should"]
    assert should[0] == {"term": {"formattedId": {"value": "AD-000123", "boost": 100.0}}}
    assert should[2]["wildcard"]["formattedId"]["value"] == "*AD-000123*"


def test_compile_typesense_params():
    params = compile_typesense(build_plan(SearchQuery(text="áo dài cưới", category="Áo Dài")))
    query_by = params["query_by"].split(",")
    weights = params["query_by_weights"].split(",")
    assert query_by[0] == "name"
    assert weights[0] == "20"
    assert "nameNormalized" in query_by
    assert len(query_by) == len(weights)
    assert params["num_typos"] == 1
    assert params["filter_by"] == "category:=`Áo Dài`"
    assert "drop_tokens_threshold" not in params


def test_compile_typesense_requires_all_words_without_category():
    params = compile_typesense(build_plan(SearchQuery(text="áo dài cưới")))
    assert params["drop_tokens_threshold"] == 0
    assert "fallback" in params["infix"].split(",")


def test_compile_typesense_product_id_is_strict():
    params = compile_typesense(build_plan(SearchQuery(text="ad000123")))
    assert params["num_typos"] == 0
    assert set(params["prefix"].split(",")) == {"false"}
    assert "formattedId" in params["query_by"].split(",")


def test_compile_typesense_without_text_sorts_by_recency():
    params = compile_typesense(build_plan(SearchQuery(category="Quần")))
    assert params["q"] == "*"
    assert params["sort_by"] == "updatedAt:desc"
