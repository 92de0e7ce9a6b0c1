"""
LLM extraction: schema, provider client and cost governor.
"""

from .client import AnthropicProvider, ExtractionClient, OpenAIProvider
from .governor import CostStats, ExtractionGovernor
from .schema import (
    DecisionExtraction,
    ExtractionInput,
    ExtractionResult,
    SuggestionResult,
    Usage,
)

__all__ = [
    "AnthropicProvider",
    "CostStats",
    "DecisionExtraction",
    "ExtractionClient",
    "ExtractionGovernor",
    "ExtractionInput",
    "ExtractionResult",
    "OpenAIProvider",
    "SuggestionResult",
    "Usage",
]
