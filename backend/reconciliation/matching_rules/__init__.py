"""
Matching Rules Module
"""

from .candidate_rules import CandidateMatchingRules, candidate_rules, find_candidates

__all__ = ["CandidateMatchingRules", "candidate_rules", "find_candidates"]
