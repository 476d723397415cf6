"""
Unit tests for the recursive criteria evaluator.
"""

import pytest

from shared.errors import RuleEvaluationError
from service_cohort.app.adapters.parameters import CallParameters
from service_cohort.app.criteria.evaluator import CriteriaEvaluator
from service_cohort.app.criteria.models import (
    CombinationNode, CriteriaDefinition, ExpressionLeaf, ReferenceLeaf,
    UnsupportedNode, parse_evidence_variable
)
from service_cohort.app.criteria.resolver import ReferenceResolver

SUBJECT = "Patient/p1"
PARAMS = CallParameters.from_mapping({"period": "2024"})


def _evaluator(rule_client, repository):
    return CriteriaEvaluator(rule_client, ReferenceResolver(repository))


class TestEvaluateNode:
    """Test cases for single-node evaluation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("node", [
        ExpressionLeaf(expression="a"),
        CombinationNode(code="any-of", children=(ExpressionLeaf("a"), ExpressionLeaf("b"))),
        CombinationNode(code="all-of", children=()),
        UnsupportedNode(),
        ReferenceLeaf(canonical="http://example.org/EvidenceVariable/missing"),
    ])
    async def test_exclusion_negates_own_result(self, node, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": True, "b": False}})
        evaluator = _evaluator(client, repository)
        definition = CriteriaDefinition()

        included = await evaluator.evaluate_node(node, definition, SUBJECT, PARAMS, "lib")
        excluded_node = type(node)(**{**node.__dict__, "exclude": True})
        excluded = await evaluator.evaluate_node(excluded_node, definition, SUBJECT, PARAMS, "lib")

        assert excluded is (not included)

    @pytest.mark.asyncio
    async def test_exclusion_applies_to_child_not_parent(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": True, "b": True}})
        evaluator = _evaluator(client, repository)
        node = CombinationNode(
            code="all-of",
            children=(ExpressionLeaf("a"), ExpressionLeaf("b", exclude=True))
        )

        assert await evaluator.evaluate_node(node, CriteriaDefinition(), SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_xor_override(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": True, "b": True, "c": False}})
        evaluator = _evaluator(client, repository)
        children = (ExpressionLeaf("a"), ExpressionLeaf("b"), ExpressionLeaf("c"))

        any_of = CombinationNode(code="any-of", children=children)
        exactly_one = CombinationNode(code="any-of", children=children, exclusive_or=True)

        assert await evaluator.evaluate_node(any_of, CriteriaDefinition(), SUBJECT, PARAMS, "lib") is True
        assert await evaluator.evaluate_node(exactly_one, CriteriaDefinition(), SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_combination_evaluates_every_child(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": False, "b": True}})
        evaluator = _evaluator(client, repository)
        node = CombinationNode(code="all-of", children=(ExpressionLeaf("a"), ExpressionLeaf("b")))

        await evaluator.evaluate_node(node, CriteriaDefinition(), SUBJECT, PARAMS, "lib")

        assert [call[1] for call in client.calls] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_blank_expression_makes_no_remote_call(self, make_rule_client, repository):
        client = make_rule_client({})
        evaluator = _evaluator(client, repository)

        result = await evaluator.evaluate_node(ExpressionLeaf("  "), CriteriaDefinition(), SUBJECT, PARAMS, "lib")

        assert result is False
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_library_comes_from_definition(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": True}})
        evaluator = _evaluator(client, repository)
        definition = CriteriaDefinition(library="http://example.org/Library/Screening|3")

        await evaluator.evaluate_node(ExpressionLeaf("a"), definition, SUBJECT, PARAMS, "lib")

        assert client.calls == [("Screening", "a", SUBJECT)]

    @pytest.mark.asyncio
    async def test_fallback_library(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": True}})
        evaluator = _evaluator(client, repository)

        await evaluator.evaluate_node(ExpressionLeaf("a"), CriteriaDefinition(), SUBJECT, PARAMS, "fallback")

        assert client.calls == [("fallback", "a", SUBJECT)]

    @pytest.mark.asyncio
    async def test_unknown_node_type_is_false(self, make_rule_client, repository):
        evaluator = _evaluator(make_rule_client({}), repository)

        assert await evaluator.evaluate_node(object(), CriteriaDefinition(), SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_remote_failure_propagates(self, make_rule_client, repository):
        client = make_rule_client({SUBJECT: {"a": RuleEvaluationError("engine down")}})
        evaluator = _evaluator(client, repository)

        with pytest.raises(RuleEvaluationError):
            await evaluator.evaluate_node(ExpressionLeaf("a"), CriteriaDefinition(), SUBJECT, PARAMS, "lib")


class TestEvaluateTree:
    """Test cases for whole-definition evaluation."""

    @pytest.mark.asyncio
    async def test_empty_definition_is_vacuously_true(self, make_rule_client, repository):
        evaluator = _evaluator(make_rule_client({}), repository)

        assert await evaluator.evaluate_tree(CriteriaDefinition(), SUBJECT, PARAMS, "lib") is True

    @pytest.mark.asyncio
    async def test_single_characteristic(self, make_rule_client, repository, fhir):
        evaluator = _evaluator(make_rule_client({SUBJECT: {"a": True}}), repository)
        definition = parse_evidence_variable(fhir.evidence_variable(fhir.expression("a", exclude=True)))

        assert await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_top_level_siblings_short_circuit(self, make_rule_client, repository, fhir):
        client = make_rule_client({SUBJECT: {"a": True, "b": False, "c": True}})
        evaluator = _evaluator(client, repository)
        definition = parse_evidence_variable(fhir.evidence_variable(
            fhir.expression("a"), fhir.expression("b"), fhir.expression("c")
        ))

        result = await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib")

        assert result is False
        assert [call[1] for call in client.calls] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_top_level_siblings_all_true(self, make_rule_client, repository, fhir):
        client = make_rule_client({SUBJECT: {"a": True, "b": True}})
        evaluator = _evaluator(client, repository)
        definition = parse_evidence_variable(fhir.evidence_variable(fhir.expression("a"), fhir.expression("b")))

        assert await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib") is True

    @pytest.mark.asyncio
    async def test_reference_leaf_evaluates_nested_definition(self, make_rule_client, make_repository, fhir):
        canonical = "http://example.org/EvidenceVariable/adults|1.0"
        repository = make_repository(canonicals={
            ("EvidenceVariable", canonical): fhir.evidence_variable(
                fhir.expression("isAdult"),
                ev_id="adults",
                library="http://example.org/Library/Demographics"
            ),
        })
        client = make_rule_client({SUBJECT: {"isAdult": True}})
        evaluator = _evaluator(client, repository)
        definition = parse_evidence_variable(fhir.evidence_variable(fhir.reference(canonical)))

        assert await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib") is True
        # The nested definition's own library applies to its leaves
        assert client.calls == [("Demographics", "isAdult", SUBJECT)]

    @pytest.mark.asyncio
    async def test_unresolved_reference_is_false(self, make_rule_client, repository, fhir):
        evaluator = _evaluator(make_rule_client({}), repository)
        definition = parse_evidence_variable(fhir.evidence_variable(
            fhir.reference("http://example.org/EvidenceVariable/missing")
        ))

        assert await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_cyclic_reference_is_false(self, make_rule_client, make_repository, fhir):
        canonical = "http://example.org/EvidenceVariable/loop"
        repository = make_repository(canonicals={
            ("EvidenceVariable", canonical): fhir.evidence_variable(fhir.reference(canonical), ev_id="loop"),
        })
        evaluator = _evaluator(make_rule_client({}), repository)
        definition = parse_evidence_variable(fhir.evidence_variable(fhir.reference(canonical)))

        assert await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib") is False

    @pytest.mark.asyncio
    async def test_params_are_not_mutated(self, make_rule_client, repository, fhir):
        evaluator = _evaluator(make_rule_client({SUBJECT: {"a": True}}), repository)
        definition = parse_evidence_variable(fhir.evidence_variable(fhir.expression("a")))
        before = PARAMS.to_fhir()

        await evaluator.evaluate_tree(definition, SUBJECT, PARAMS, "lib")

        assert PARAMS.to_fhir() == before
