"""
Immutable FHIR ``Parameters`` bag used for remote rule evaluation calls.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

SUBJECT_PARAMETER = "subject"

FHIR_JSON_HEADERS = {
    "Accept": "application/fhir+json",
    "Content-Type": "application/fhir+json",
}


def strip_resource_prefix(subject_id: str) -> str:
    """Drop a ``Patient/`` style prefix, keeping the logical id."""
    if subject_id is None:
        return subject_id
    return subject_id.rsplit("/", 1)[-1]


def _typed_value(value: Any) -> Dict[str, Any]:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"valueBoolean": value}
    if isinstance(value, int):
        return {"valueInteger": value}
    if isinstance(value, float):
        return {"valueDecimal": value}
    return {"valueString": str(value)}


@dataclass(frozen=True)
class CallParameters:
    """Ordered, read-only set of ``Parameters.parameter`` entries."""
    entries: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_fhir(cls, resource: Optional[Mapping[str, Any]]) -> "CallParameters":
        if not resource:
            return cls()
        return cls(tuple(copy.deepcopy(entry) for entry in resource.get("parameter") or []))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "CallParameters":
        return cls(tuple({"name": name, **_typed_value(value)} for name, value in values.items()))

    def names(self) -> Iterable[str]:
        return [entry.get("name") for entry in self.entries]

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        for entry in self.entries:
            if entry.get("name") == name:
                return copy.deepcopy(entry)
        return None

    def with_subject(self, subject_id: str) -> "CallParameters":
        """Copy with a single ``subject`` entry holding the prefix-free id."""
        kept = tuple(entry for entry in self.entries if entry.get("name") != SUBJECT_PARAMETER)
        subject = {"name": SUBJECT_PARAMETER, "valueString": strip_resource_prefix(subject_id)}
        return CallParameters(kept + (subject,))

    def to_fhir(self) -> Dict[str, Any]:
        return {
            "resourceType": "Parameters",
            "parameter": [copy.deepcopy(entry) for entry in self.entries],
        }


def read_boolean(reply: Optional[Mapping[str, Any]], name: str) -> bool:
    """Value of the boolean parameter ``name`` in a ``Parameters`` reply, else False."""
    if not reply or not name:
        return False
    for entry in reply.get("parameter") or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("name") == name and isinstance(entry.get("valueBoolean"), bool):
            return entry["valueBoolean"]
    return False
