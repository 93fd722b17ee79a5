"""Eligibility matching engine core.

Leaf-first: the rule evaluator checks structured predicates, the criteria
interpreter turns free-text clauses into predicates, the retriever
produces bounded candidate sets, and the scorer ranks and explains.
Orchestration lives in :mod:`src.pipeline.orchestrator`.

Public API::

    from src.services.matching import (
        RuleEvaluator,
        CriteriaInterpreter,
        CandidateRetriever,
        SchemeScorer,
        MatchHistory,
    )
"""

from __future__ import annotations

from src.services.matching.errors import (
    MatchingError,
    PredicateCorruption,
    RetrievalUnavailable,
    ValidationError,
)
from src.services.matching.history import MatchHistory
from src.services.matching.interfaces import (
    Interpretation,
    ProfileStore,
    ReasoningProvider,
    SchemeFilter,
    SchemeStore,
    SimilaritySearchProvider,
)
from src.services.matching.interpreter import CriteriaInterpreter, InterpretedCriteria
from src.services.matching.keyword_reasoner import KeywordCriteriaReasoner
from src.services.matching.retriever import Candidate, CandidateRetriever
from src.services.matching.rules import RuleEvaluator, predicates_from_criteria
from src.services.matching.scorer import SchemeScorer, ScoringWeights

__all__ = [
    "Candidate",
    "CandidateRetriever",
    "CriteriaInterpreter",
    "Interpretation",
    "InterpretedCriteria",
    "KeywordCriteriaReasoner",
    "MatchHistory",
    "MatchingError",
    "PredicateCorruption",
    "ProfileStore",
    "ReasoningProvider",
    "RetrievalUnavailable",
    "RuleEvaluator",
    "SchemeFilter",
    "SchemeScorer",
    "SchemeStore",
    "ScoringWeights",
    "SimilaritySearchProvider",
    "ValidationError",
    "predicates_from_criteria",
]
