"""
Criteria tree models for cohort eligibility.

An eligibility definition arrives as a FHIR ``EvidenceVariable`` resource. It is
parsed once into an immutable tree of characteristic nodes; extension metadata
(library canonicals, the exclusive-or flag) is lifted into explicit fields so
evaluation never has to scan raw JSON again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

EXT_CQF_LIBRARY = "http://hl7.org/fhir/StructureDefinition/cqf-library"
EXT_EXCLUSIVE_OR = "https://www.centreantoinelacassagne.org/StructureDefinition/EXT-Exclusive-OR"


class Operator(str, Enum):
    """Logical operators for combination nodes."""
    AND = "and"
    OR = "or"
    XOR = "xor"


# FHIR CharacteristicCombination codes; anything else reduces with AND
COMBINATION_CODES = {
    "all-of": Operator.AND,
    "any-of": Operator.OR,
}


def operator_for(code: Optional[str], exclusive_or: bool = False) -> Operator:
    """Map a combination code to an operator, honouring the XOR override."""
    if exclusive_or:
        return Operator.XOR
    if not code:
        return Operator.AND
    return COMBINATION_CODES.get(code.strip().lower(), Operator.AND)


@dataclass(frozen=True)
class CombinationNode:
    """Characteristic defined by combining nested characteristics."""
    code: Optional[str]
    children: Tuple["CharacteristicNode", ...] = ()
    exclude: bool = False
    exclusive_or: bool = False

    @property
    def operator(self) -> Operator:
        return operator_for(self.code, self.exclusive_or)


@dataclass(frozen=True)
class ExpressionLeaf:
    """Characteristic evaluated by a named expression in a rule library."""
    expression: str
    library: Optional[str] = None
    exclude: bool = False


@dataclass(frozen=True)
class ReferenceLeaf:
    """Characteristic delegated to another eligibility definition."""
    canonical: str
    exclude: bool = False


@dataclass(frozen=True)
class UnsupportedNode:
    """Characteristic with no definition the evaluator understands."""
    exclude: bool = False
    reason: str = "no supported definition"


CharacteristicNode = Union[CombinationNode, ExpressionLeaf, ReferenceLeaf, UnsupportedNode]


@dataclass(frozen=True)
class CriteriaDefinition:
    """Root of an eligibility criteria tree."""
    id: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    library: Optional[str] = None
    characteristics: Tuple[CharacteristicNode, ...] = ()


@dataclass(frozen=True)
class StudyMetadata:
    """The research study a cohort is assembled for."""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ResultGroup:
    """Qualifying members of a cohort, identified only by pseudonyms."""
    id: str
    name: str
    description: Optional[str] = None
    members: List[Dict[str, Any]] = field(default_factory=list)
    active: bool = True

    def add_member(self, identifier: Dict[str, Any]):
        self.members.append({"entity": {"identifier": identifier}})

    def to_fhir(self) -> Dict[str, Any]:
        """Serialize as a FHIR ``Group`` resource."""
        group: Dict[str, Any] = {
            "resourceType": "Group",
            "id": self.id,
            "type": "person",
            "membership": "enumerated",
            "active": self.active,
            "name": self.name,
            "quantity": len(self.members),
        }
        if self.description is not None:
            group["description"] = self.description
        if self.members:
            group["member"] = list(self.members)
        return group


def _extension_value(element: Dict[str, Any], url: str, value_key: str) -> Any:
    for ext in element.get("extension") or []:
        if ext.get("url") == url and value_key in ext:
            return ext[value_key]
    return None


def _library_canonical(element: Dict[str, Any]) -> Optional[str]:
    value = _extension_value(element, EXT_CQF_LIBRARY, "valueCanonical")
    if isinstance(value, str) and value.strip():
        return value
    return None


def _nonblank(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_characteristic(characteristic: Dict[str, Any]) -> CharacteristicNode:
    """Parse one ``EvidenceVariable.characteristic`` element into a node."""
    exclude = characteristic.get("exclude") is True

    combination = characteristic.get("definitionByCombination")
    if isinstance(combination, dict):
        return CombinationNode(
            code=combination.get("code"),
            children=tuple(
                parse_characteristic(child)
                for child in combination.get("characteristic") or []
                if isinstance(child, dict)
            ),
            exclude=exclude,
            exclusive_or=_extension_value(combination, EXT_EXCLUSIVE_OR, "valueBoolean") is True,
        )

    expression = characteristic.get("definitionExpression")
    if isinstance(expression, dict):
        return ExpressionLeaf(
            expression=(expression.get("expression") or "").strip(),
            library=_library_canonical(characteristic),
            exclude=exclude,
        )

    canonical = _nonblank(characteristic.get("definitionCanonical"))
    if canonical:
        return ReferenceLeaf(canonical=canonical, exclude=exclude)

    return UnsupportedNode(exclude=exclude)


def parse_evidence_variable(resource: Dict[str, Any]) -> CriteriaDefinition:
    """Build a criteria tree from a FHIR ``EvidenceVariable`` resource."""
    return CriteriaDefinition(
        id=resource.get("id"),
        url=resource.get("url"),
        name=resource.get("name"),
        title=resource.get("title"),
        description=resource.get("description"),
        library=_library_canonical(resource),
        characteristics=tuple(
            parse_characteristic(characteristic)
            for characteristic in resource.get("characteristic") or []
            if isinstance(characteristic, dict)
        ),
    )


def parse_research_study(resource: Dict[str, Any]) -> StudyMetadata:
    """Extract the metadata a result group copies from a ``ResearchStudy``."""
    return StudyMetadata(
        id=resource.get("id") or "",
        name=resource.get("name") or resource.get("title"),
        description=resource.get("description"),
    )
