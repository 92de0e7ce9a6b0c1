"""
Rule-based artifact sieve.
"""

from .scorer import SieveConfig, SieveInput, SieveVerdict, evaluate

__all__ = ["SieveConfig", "SieveInput", "SieveVerdict", "evaluate"]
