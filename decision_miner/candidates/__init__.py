"""
Candidate review workflow and decision records.
"""

from .services import CandidateService, DecisionService, ExtractionOutcome
from .state_machine import CandidateStatus, DismissReason, can_transition

__all__ = [
    "CandidateService",
    "CandidateStatus",
    "DecisionService",
    "DismissReason",
    "ExtractionOutcome",
    "can_transition",
]
