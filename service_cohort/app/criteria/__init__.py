"""
Criteria package.

Models the eligibility tree as a closed set of node types and evaluates
it for one subject at a time.

Modules of interest:
- models: Node types, FHIR parsing, result group.
- reducer: AND / OR / exactly-one XOR reduction of child outcomes.
- resolver: Canonical reference resolution with deterministic fallbacks.
- evaluator: Recursive evaluation with exclusion and implicit top-level AND.
"""

from .models import (
    Operator, CombinationNode, ExpressionLeaf, ReferenceLeaf, UnsupportedNode,
    CriteriaDefinition, StudyMetadata, ResultGroup,
    parse_evidence_variable, parse_research_study, operator_for
)
from .reducer import reduce
from .resolver import ReferenceResolver, LibraryResolution, ResolutionSource
from .evaluator import CriteriaEvaluator

__all__ = [
    "Operator",
    "CombinationNode",
    "ExpressionLeaf",
    "ReferenceLeaf",
    "UnsupportedNode",
    "CriteriaDefinition",
    "StudyMetadata",
    "ResultGroup",
    "parse_evidence_variable",
    "parse_research_study",
    "operator_for",
    "reduce",
    "ReferenceResolver",
    "LibraryResolution",
    "ResolutionSource",
    "CriteriaEvaluator",
]
