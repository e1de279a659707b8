"""PydanticAI agents for the SEO intelligence pipeline.

AnalyzerAgent:
    One provider call per article batch; returns typed recommendations
    with citations resolved against the batch.

SopWriterAgent:
    Optional polish of generated SOP drafts.

Example:
    >>> from agents import AnalyzerAgent
    >>> analyzer = AnalyzerAgent(config)
    >>> recs = await analyzer.analyze_batch(batch, start_index=0)
"""

from agents.analyzer import AnalyzerAgent, ProviderError
from agents.sop_writer import SopWriterAgent

__all__ = [
    "AnalyzerAgent",
    "ProviderError",
    "SopWriterAgent",
]
