"""Tests for the analyzer agent, backed by pydantic-ai's FunctionModel."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pydantic_ai.messages import ModelMessage, ModelResponse, SystemPromptPart, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agents.analyzer import AnalyzerAgent, ProviderError, _parse_local_model, build_prompt, create_model
from models.digest import AnalysisArticle
from parsing import BLOCK_END, BLOCK_START


def _make_batch(n: int = 2) -> list[AnalysisArticle]:
    return [
        AnalysisArticle(
            id=f"fr-{i}",
            source_id=f"src-{i}",
            url=f"https://example.com/{i}",
            title=f"Article {i}",
            content=f"Body of article {i}",
            source_name=f"Source {i}",
            source_tier="tier_1" if i == 0 else "tier_3",
            category="GBP",
        )
        for i in range(n)
    ]


def _make_response(*titles: str) -> str:
    blocks = []
    for title in titles:
        item = {"title": title, "summary": "s", "impact": "medium", "citations": [{"article": 0}]}
        blocks.append(f"{BLOCK_START}\n{json.dumps(item)}\n{BLOCK_END}")
    return "\n".join(blocks)


def _make_model(text: str, seen: list | None = None) -> FunctionModel:
    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if seen is not None:
            seen.extend(messages)
        return ModelResponse(parts=[TextPart(text)])

    return FunctionModel(respond)


class TestBuildPrompt:
    def test_articles_numbered_with_tier_labels(self, config):
        system, user = build_prompt(_make_batch(), config)
        assert "[0] SOURCE: Source 0 (official) | CATEGORY: GBP" in user
        assert "[1] SOURCE: Source 1 (community)" in user
        assert "URL: https://example.com/1" in user
        assert "\n---\n" in user
        assert config.agency_name in system
        assert BLOCK_START in system and BLOCK_END in system

    def test_deterministic(self, config):
        assert build_prompt(_make_batch(), config) == build_prompt(_make_batch(), config)


class TestModelSelection:
    def test_parse_local_model(self):
        assert _parse_local_model("openai:qwen@http://127.0.0.1:8080/v1") == ("qwen", "http://127.0.0.1:8080/v1")
        assert _parse_local_model("anthropic:claude-sonnet-4-5") is None

    def test_remote_model_string_passed_through(self):
        assert create_model("anthropic:claude-sonnet-4-5") == "anthropic:claude-sonnet-4-5"

    def test_model_instance_passed_through(self):
        model = _make_model("No changes.")
        assert create_model(model) is model


class TestAnalyzeBatch:
    def test_parses_response_into_recommendations(self, config):
        analyzer = AnalyzerAgent(config, model=_make_model(_make_response("One", "Two")))
        recs = asyncio.run(analyzer.analyze_batch(_make_batch(), start_index=3))
        assert [(r.index, r.title) for r in recs] == [(3, "One"), (4, "Two")]
        assert recs[0].citations[0].fetch_result_id == "fr-0"
        assert analyzer.calls == 1

    def test_sends_system_and_user_prompt(self, config):
        seen: list = []
        analyzer = AnalyzerAgent(config, model=_make_model("No changes.", seen))
        asyncio.run(analyzer.analyze_batch(_make_batch()))
        parts = [p for m in seen for p in m.parts]
        system = [p for p in parts if isinstance(p, SystemPromptPart)]
        user = [p for p in parts if isinstance(p, UserPromptPart)]
        assert system and config.agency_name in system[0].content
        assert user and "Article 1" in user[0].content

    def test_empty_response_yields_nothing(self, config):
        analyzer = AnalyzerAgent(config, model=_make_model("Nothing notable this month."))
        assert asyncio.run(analyzer.analyze_batch(_make_batch())) == []

    def test_tracks_token_usage(self, config):
        analyzer = AnalyzerAgent(config, model=_make_model(_make_response("One")))
        asyncio.run(analyzer.analyze_batch(_make_batch()))
        assert analyzer.input_tokens > 0
        assert analyzer.output_tokens > 0

    def test_provider_failure_raises_provider_error(self, config):
        def fail(messages, info):
            raise RuntimeError("overloaded")

        analyzer = AnalyzerAgent(config, model=FunctionModel(fail))
        with pytest.raises(ProviderError, match="overloaded"):
            asyncio.run(analyzer.analyze_batch(_make_batch()))

    def test_timeout_raises_provider_error(self, config):
        async def slow(messages, info):
            await asyncio.sleep(10)
            return ModelResponse(parts=[TextPart("late")])

        config.provider_timeout_seconds = 1
        analyzer = AnalyzerAgent(config, model=FunctionModel(slow))
        with pytest.raises(ProviderError, match="timed out"):
            asyncio.run(analyzer.analyze_batch(_make_batch()))

    def test_usage_read_as_attribute(self, config):
        analyzer = AnalyzerAgent(config, model=_make_model("unused"))
        result = SimpleNamespace(
            output=_make_response("One"),
            usage=SimpleNamespace(input_tokens=120, output_tokens=30),
        )
        analyzer._agent = SimpleNamespace(run=AsyncMock(return_value=result))
        recs = asyncio.run(analyzer.analyze_batch(_make_batch()))
        assert [r.title for r in recs] == ["One"]
        assert (analyzer.input_tokens, analyzer.output_tokens) == (120, 30)

    def test_unreadable_result_raises_provider_error(self, config):
        analyzer = AnalyzerAgent(config, model=_make_model("unused"))
        result = SimpleNamespace(output="text", usage=None)
        analyzer._agent = SimpleNamespace(run=AsyncMock(return_value=result))
        with pytest.raises(ProviderError):
            asyncio.run(analyzer.analyze_batch(_make_batch()))
        assert analyzer.calls == 0
