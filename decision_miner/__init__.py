"""
Decision Miner

Syncs merged pull requests, sieves them for architectural decisions and
extracts structured decision records for review.
"""

import importlib.metadata

__version__ = importlib.metadata.version("decision-miner")

from .candidates import CandidateService, DecisionService
from .errors import PipelineError
from .extract import ExtractionClient, ExtractionGovernor
from .sieve import evaluate
from .sync import Cursor, CursorManager, SyncOrchestrator

__all__ = [
    "CandidateService",
    "Cursor",
    "CursorManager",
    "DecisionService",
    "ExtractionClient",
    "ExtractionGovernor",
    "PipelineError",
    "SyncOrchestrator",
    "evaluate",
]
