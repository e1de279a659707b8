"""Tests for the analyzer response parser."""

import json

from models.digest import AnalysisArticle
from models.recommendation import Confidence, Impact
from parsing import BLOCK_END, BLOCK_START, extract_items, parse_recommendations, strip_code_fences


def _make_batch(n: int = 3, sources: list[str] | None = None) -> list[AnalysisArticle]:
    sources = sources or [f"src-{i}" for i in range(n)]
    return [
        AnalysisArticle(
            id=f"fr-{i}",
            source_id=sources[i],
            url=f"https://example.com/{i}",
            title=f"Article {i}",
            content="content",
            source_name=f"Source {sources[i]}",
            source_tier="tier_2",
            category="GBP",
        )
        for i in range(n)
    ]


def _make_block(**fields) -> str:
    item = {
        "title": "Update GBP categories",
        "summary": "Google changed primary category weighting.",
        "impact": "high",
        "citations": [{"article": 0, "excerpt": "quote"}],
        **fields,
    }
    return f"{BLOCK_START}\n{json.dumps(item)}\n{BLOCK_END}"


class TestExtractItems:
    def test_ignores_prose_between_blocks(self):
        response = "Here you go:\n" + _make_block() + "\nand\n" + _make_block(title="Second")
        items = extract_items(response)
        assert [i["title"] for i in items] == ["Update GBP categories", "Second"]

    def test_truncated_response_keeps_complete_blocks(self):
        response = _make_block() + "\n" + _make_block(title="Second") + f"\n{BLOCK_START}\n{{\"title\": \"Cut"
        assert len(extract_items(response)) == 2

    def test_unterminated_block_does_not_swallow_next(self):
        response = f'{BLOCK_START}{{"title":"Broken","summary":"cut"\n' + _make_block(
            title="Good", citations=[{"article": 1, "excerpt": "quote"}]
        )
        assert [i["title"] for i in extract_items(response)] == ["Good"]
        recs = parse_recommendations(response, _make_batch())
        assert [r.title for r in recs] == ["Good"]
        assert recs[0].citations[0].fetch_result_id == "fr-1"

    def test_malformed_block_skipped(self):
        response = f"{BLOCK_START}\n{{not json\n{BLOCK_END}\n" + _make_block()
        assert len(extract_items(response)) == 1

    def test_fenced_block_content(self):
        response = f"{BLOCK_START}\n```json\n{json.dumps({'title': 't'})}\n```\n{BLOCK_END}"
        assert extract_items(response) == [{"title": "t"}]

    def test_legacy_object_shape(self):
        legacy = {
            "recommendations": [{
                "title": "t",
                "summary": "s",
                "impact": "medium",
                "citationIndices": [1, 2],
                "citationExcerpts": ["a"],
            }]
        }
        items = extract_items("```json\n" + json.dumps(legacy) + "\n```")
        assert items[0]["citations"] == [{"article": 1, "excerpt": "a"}, {"article": 2, "excerpt": ""}]

    def test_garbage_yields_nothing(self):
        assert extract_items("I could not find anything relevant.") == []

    def test_strip_code_fences(self):
        assert strip_code_fences("```json\n{}\n```") == "{}"


class TestParseRecommendations:
    def test_indices_continue_from_start(self):
        response = _make_block() + _make_block(title="Second")
        recs = parse_recommendations(response, _make_batch(), start_index=7)
        assert [r.index for r in recs] == [7, 8]

    def test_citation_resolved_to_batch_article(self):
        recs = parse_recommendations(_make_block(citations=[{"article": 2, "excerpt": "q"}]), _make_batch())
        citation = recs[0].citations[0]
        assert citation.fetch_result_id == "fr-2"
        assert citation.source_url == "https://example.com/2"
        assert citation.excerpt == "q"

    def test_out_of_range_citations_dropped(self):
        block = _make_block(citations=[{"article": 0}, {"article": 9}, {"article": -1}])
        recs = parse_recommendations(block, _make_batch())
        assert [c.fetch_result_id for c in recs[0].citations] == ["fr-0"]

    def test_recommendation_without_valid_citation_skipped(self):
        response = _make_block(citations=[{"article": 42}]) + _make_block(title="Kept")
        recs = parse_recommendations(response, _make_batch())
        assert [r.title for r in recs] == ["Kept"]
        assert recs[0].index == 0

    def test_non_integer_refs_ignored(self):
        block = _make_block(citations=[{"article": "0"}, {"article": True}, {"article": 1}])
        recs = parse_recommendations(block, _make_batch())
        assert [c.fetch_result_id for c in recs[0].citations] == ["fr-1"]

    def test_missing_required_field_skipped(self):
        block = f"{BLOCK_START}\n{json.dumps({'title': 't', 'impact': 'high', 'citations': [0]})}\n{BLOCK_END}"
        assert parse_recommendations(block, _make_batch()) == []

    def test_invalid_impact_skipped(self):
        assert parse_recommendations(_make_block(impact="critical"), _make_batch()) == []

    def test_impact_normalized(self):
        recs = parse_recommendations(_make_block(impact=" Medium "), _make_batch())
        assert recs[0].impact is Impact.MEDIUM

    def test_confidence_counts_distinct_sources(self):
        batch = _make_batch(3, sources=["a", "a", "b"])
        same_source = _make_block(citations=[{"article": 0}, {"article": 1}])
        two_sources = _make_block(citations=[{"article": 0}, {"article": 2}])
        recs = parse_recommendations(same_source + two_sources, batch)
        assert recs[0].confidence is Confidence.EMERGING
        assert recs[1].confidence is Confidence.VERIFIED

    def test_duplicate_refs_merged(self):
        recs = parse_recommendations(_make_block(citations=[0, 0, {"article": 0}]), _make_batch())
        assert len(recs[0].citations) == 1

    def test_empty_response(self):
        assert parse_recommendations("", _make_batch()) == []
        assert parse_recommendations("   \n", _make_batch()) == []

    def test_process_change_flag(self):
        recs = parse_recommendations(
            _make_block(process_change=True) + _make_block(details="RECOMMENDED ADJUSTMENT: add photos weekly"),
            _make_batch(),
        )
        assert recs[0].implies_process_change
        assert recs[1].implies_process_change
        assert recs[1].adjustment == "add photos weekly"
