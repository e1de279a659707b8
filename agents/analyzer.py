"""Analyzer agent: turns a batch of articles into recommendations.

This module implements the AnalyzerAgent, which sends one batch of
fetched articles to the language model and parses the reply into
citation-backed Recommendation records.

Design:
    - One provider request per batch; no retries. A failed or timed-out
      call raises ProviderError and the digest run fails at that point.
    - The prompt is deterministic for a given batch and configuration.
    - The model answers in delimited blocks (see parsing.py) instead of
      one large JSON document, so a response truncated at the token limit
      still yields every complete block before the cut.
"""

import asyncio
import logging
from dataclasses import dataclass

from openai import AsyncOpenAI
from pydantic_ai import Agent, RunContext, UsageLimits
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from config import Config
from models.digest import AnalysisArticle
from models.recommendation import Recommendation
from models.source import SourceTier
from parsing import BLOCK_END, BLOCK_START, parse_recommendations

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when the language-model call fails or times out."""


# === System Prompt ===
# Agency framing, authority weighting and the response contract.

ANALYZER_PROMPT = """You are an expert Local SEO intelligence analyst for {agency_name}, {agency_focus}.

YOUR ROLE: Analyze industry news and identify changes that affect how the agency works. For each finding, explain what we currently do, what is changing, and what we should adjust.

## Source Authority
- official (tier 1): platform announcements, highest authority, confirmed changes
- expert (tier 2): recognized industry experts, high authority
- community (tier 3): forums, Reddit, blogs; supporting evidence only

Weigh claims by source authority. Prefer findings corroborated by more than one source, and cite every article that supports a finding.

## Response Format
Write one block per recommendation, exactly like this:

{block_start}
{{"category": "Reviews|GBP|LSA|Landing Pages|Paid Social|Cross-Channel",
  "title": "Short actionable title",
  "summary": "2-3 sentences: what changed and why it matters",
  "details": "CURRENT APPROACH: ...\\nWHAT'S CHANGING: ...\\nRECOMMENDED ADJUSTMENT: ...",
  "impact": "high|medium|low",
  "process_change": true,
  "citations": [{{"article": 0, "excerpt": "relevant quote from article 0"}}]}}
{block_end}

## Rules
- The block content must be a single valid JSON object.
- "article" is the number in square brackets before each article. Only cite articles from this batch.
- Every recommendation cites at least one article.
- Set "process_change" to true when the recommendation changes a standard operating procedure.
- Focus on changes that directly affect lead generation for the agency's clients.
- Prioritize items that need action over purely informational ones.
- If nothing meaningful changed, write no blocks. Quality over quantity."""


@dataclass
class AnalyzerContext:
    """Runtime context passed to the analyzer agent.

    Attributes:
        system_prompt: Fully rendered system prompt for this call
    """

    system_prompt: str


def _tier_label(tier: str) -> str:
    try:
        return SourceTier(tier).label
    except ValueError:
        return tier


def build_prompt(batch: list[AnalysisArticle], config: Config) -> tuple[str, str]:
    """Render (system_prompt, user_prompt) for one batch.

    Article content is expected to be truncated already.
    """
    system_prompt = ANALYZER_PROMPT.format(
        agency_name=config.agency_name,
        agency_focus=config.agency_focus,
        block_start=BLOCK_START,
        block_end=BLOCK_END,
    )
    blocks = [
        f"[{i}] SOURCE: {a.source_name} ({_tier_label(a.source_tier)}) | CATEGORY: {a.category}\n"
        f"TITLE: {a.title}\n"
        f"URL: {a.url}\n"
        f"CONTENT: {a.content}\n"
        for i, a in enumerate(batch)
    ]
    user_prompt = (
        f"Analyze these {len(batch)} articles and write recommendations.\n\n"
        "ARTICLES:\n" + "\n---\n".join(blocks)
    )
    return system_prompt, user_prompt


def _parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        rest = model_str[7:]  # Remove "openai:" prefix
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return None


def create_model(model: str | Model) -> str | Model:
    """Create the appropriate model based on the model string.

    Supports:
    - Local OpenAI-compatible servers: 'openai:{model_name}@http://127.0.0.1:8080/v1'
    - Remote models: 'anthropic:claude-sonnet-4-5'
    - Ready-made pydantic-ai Model instances (passed through)
    """
    if not isinstance(model, str):
        return model
    parsed = _parse_local_model(model)
    if parsed:
        model_name, base_url = parsed
        logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
        # Local servers don't need authentication - use placeholder
        client = AsyncOpenAI(base_url=base_url, api_key="local-model")
        return OpenAIChatModel(model_name, provider=OpenAIProvider(openai_client=client))
    return model


def create_text_agent(model: str | Model) -> Agent[AnalyzerContext, str]:
    """Plain-text agent whose system prompt comes from the run context."""
    agent = Agent(
        create_model(model),
        deps_type=AnalyzerContext,
        output_type=str,
    )

    @agent.system_prompt
    def dynamic_prompt(ctx: RunContext[AnalyzerContext]) -> str:
        return ctx.deps.system_prompt

    return agent


class AnalyzerAgent:
    """Analyzes article batches with one provider call each.

    Token usage is accumulated across calls for job-run bookkeeping.

    Example:
        >>> analyzer = AnalyzerAgent(config)
        >>> recs = await analyzer.analyze_batch(batch, start_index=0)
    """

    def __init__(self, config: Config, model: str | Model | None = None):
        """Initialize the analyzer agent.

        Args:
            config: Application configuration
            model: Override for config.analyzer_model (tests pass a FunctionModel)
        """
        self.config = config
        self._agent = create_text_agent(model or config.analyzer_model)
        self.calls = 0
        self.input_tokens = 0
        self.output_tokens = 0

    async def call_provider(self, system_prompt: str, user_prompt: str) -> str:
        """Send one request and return the raw response text.

        Raises:
            ProviderError: On any provider failure or timeout
        """
        timeout = self.config.provider_timeout_seconds
        logger.debug("Calling provider | prompt_chars=%d", len(user_prompt))
        try:
            result = await asyncio.wait_for(
                self._agent.run(
                    user_prompt,
                    deps=AnalyzerContext(system_prompt=system_prompt),
                    usage_limits=UsageLimits(request_limit=1),
                    model_settings={"max_tokens": self.config.analyzer_max_tokens},
                ),
                timeout=timeout,
            )
            output = result.output
            usage = result.usage() if callable(result.usage) else result.usage
            input_tokens = usage.input_tokens or 0
            output_tokens = usage.output_tokens or 0
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Provider call timed out after {timeout}s") from e
        except Exception as e:
            raise ProviderError(f"Provider call failed: {type(e).__name__}: {e}") from e

        self.calls += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        logger.debug(
            "Provider responded | chars=%d tokens=%d/%d",
            len(output),
            input_tokens,
            output_tokens,
        )
        return output

    async def analyze_batch(
        self,
        batch: list[AnalysisArticle],
        start_index: int = 0,
    ) -> list[Recommendation]:
        """Prompt, call and parse one batch.

        Args:
            batch: Articles with content already truncated
            start_index: Run-wide index for the first recommendation

        Raises:
            ProviderError: If the provider call fails
        """
        system_prompt, user_prompt = build_prompt(batch, self.config)
        response = await self.call_provider(system_prompt, user_prompt)
        return parse_recommendations(response, batch, start_index)
