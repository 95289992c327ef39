"""Candidate generation: mask grammar, mutation rules and decorators."""

from pathspray.modules.words.candidates import Candidate, CandidateGenerator
from pathspray.modules.words.mask import Mask, MaskError, parse_mask
from pathspray.modules.words.rules import Rule, RuleError, compile_rules

__all__ = [
    "Candidate",
    "CandidateGenerator",
    "Mask",
    "MaskError",
    "parse_mask",
    "Rule",
    "RuleError",
    "compile_rules",
]
