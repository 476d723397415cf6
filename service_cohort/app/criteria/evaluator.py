"""
Recursive evaluation of eligibility criteria trees for a single subject.
"""

from typing import FrozenSet, Optional

from shared.logging import get_logger

from ..adapters.parameters import CallParameters
from ..adapters.rule_client import RuleEvaluationClient
from .models import (
    CharacteristicNode, CombinationNode, CriteriaDefinition,
    ExpressionLeaf, ReferenceLeaf, UnsupportedNode
)
from .reducer import reduce
from .resolver import ReferenceResolver


class CriteriaEvaluator:
    """Evaluates a criteria tree against one subject.

    Combination nodes are reduced locally, expression leaves are answered by
    the remote rule engine and reference leaves recurse into the referenced
    definition. Remote evaluation errors are not caught here.
    """

    def __init__(self, rule_client: RuleEvaluationClient, resolver: ReferenceResolver):
        self.rule_client = rule_client
        self.resolver = resolver
        self.logger = get_logger("cohort.evaluator")

    async def evaluate_tree(self, definition: CriteriaDefinition, subject_id: str,
                            params: CallParameters, fallback_library_id: str,
                            _path: FrozenSet[str] = frozenset()) -> bool:
        """Evaluate a whole definition.

        Top-level characteristics have no declared operator: they are ANDed in
        order and evaluation stops at the first false one. An empty definition
        is vacuously satisfied.
        """
        characteristics = definition.characteristics
        if not characteristics:
            return True

        for node in characteristics:
            if not await self.evaluate_node(node, definition, subject_id, params,
                                            fallback_library_id, _path):
                return False
        return True

    async def evaluate_node(self, node: CharacteristicNode, definition: CriteriaDefinition,
                            subject_id: str, params: CallParameters, fallback_library_id: str,
                            _path: FrozenSet[str] = frozenset()) -> bool:
        """Evaluate one characteristic, then apply its own exclusion flag."""
        if isinstance(node, CombinationNode):
            results = []
            for child in node.children:
                results.append(await self.evaluate_node(
                    child, definition, subject_id, params, fallback_library_id, _path
                ))
            result = reduce(results, node.operator)

        elif isinstance(node, ExpressionLeaf):
            result = await self._evaluate_expression(node, definition, subject_id, params,
                                                     fallback_library_id)

        elif isinstance(node, ReferenceLeaf):
            result = await self._evaluate_reference(node, subject_id, params,
                                                    fallback_library_id, _path)

        else:
            if isinstance(node, UnsupportedNode):
                self.logger.debug("Unsupported characteristic", reason=node.reason)
            else:
                self.logger.warning("Unknown characteristic type", node_type=type(node).__name__)
            result = False

        exclude = getattr(node, "exclude", False)
        return not result if exclude else result

    async def _evaluate_expression(self, leaf: ExpressionLeaf, definition: CriteriaDefinition,
                                   subject_id: str, params: CallParameters,
                                   fallback_library_id: str) -> bool:
        if not leaf.expression or not leaf.expression.strip():
            return False

        resolution = await self.resolver.resolve_library(
            leaf.library, definition.library, fallback_library_id
        )
        return await self.rule_client.invoke_boolean(
            resolution.library_id, leaf.expression, subject_id, params
        )

    async def _evaluate_reference(self, leaf: ReferenceLeaf, subject_id: str,
                                  params: CallParameters, fallback_library_id: str,
                                  path: FrozenSet[str]) -> bool:
        if leaf.canonical in path:
            self.logger.warning("Cyclic eligibility reference", canonical=leaf.canonical)
            return False

        nested: Optional[CriteriaDefinition] = await self.resolver.resolve_definition(leaf.canonical)
        if nested is None:
            return False

        return await self.evaluate_tree(
            nested, subject_id, params, fallback_library_id, path | {leaf.canonical}
        )
