"""
Test helper functions and factory methods for the Cohort Eligibility Service.
"""

from typing import Any, Dict, List, Optional, Tuple

EXT_CQF_LIBRARY = "http://hl7.org/fhir/StructureDefinition/cqf-library"
EXT_EXCLUSIVE_OR = "https://www.centreantoinelacassagne.org/StructureDefinition/EXT-Exclusive-OR"


class FhirDataFactory:
    """Factory for FHIR resources used in tests."""

    @staticmethod
    def expression(name: str, library: Optional[str] = None, exclude: bool = False) -> Dict[str, Any]:
        characteristic: Dict[str, Any] = {
            "definitionExpression": {"language": "text/cql-identifier", "expression": name}
        }
        if library:
            characteristic["extension"] = [{"url": EXT_CQF_LIBRARY, "valueCanonical": library}]
        if exclude:
            characteristic["exclude"] = True
        return characteristic

    @staticmethod
    def combination(code: str, *children: Dict[str, Any], exclude: bool = False,
                    exclusive_or: bool = False) -> Dict[str, Any]:
        """Create a definitionByCombination characteristic."""
        combination: Dict[str, Any] = {"code": code, "characteristic": list(children)}
        if exclusive_or:
            combination["extension"] = [{"url": EXT_EXCLUSIVE_OR, "valueBoolean": True}]
        characteristic: Dict[str, Any] = {"definitionByCombination": combination}
        if exclude:
            characteristic["exclude"] = True
        return characteristic

    @staticmethod
    def reference(canonical: str, exclude: bool = False) -> Dict[str, Any]:
        characteristic: Dict[str, Any] = {"definitionCanonical": canonical}
        if exclude:
            characteristic["exclude"] = True
        return characteristic

    @staticmethod
    def evidence_variable(*characteristics: Dict[str, Any], ev_id: str = "ev-1",
                          url: Optional[str] = None, library: Optional[str] = None) -> Dict[str, Any]:
        """Create an EvidenceVariable with top-level characteristics."""
        resource: Dict[str, Any] = {
            "resourceType": "EvidenceVariable",
            "id": ev_id,
            "name": f"{ev_id}-criteria",
            "status": "active",
            "characteristic": list(characteristics),
        }
        if url:
            resource["url"] = url
        if library:
            resource["extension"] = [{"url": EXT_CQF_LIBRARY, "valueCanonical": library}]
        return resource

    @staticmethod
    def research_study(study_id: str = "study-1", name: str = "Lung Cancer Trial",
                       description: str = "Adults with a confirmed condition") -> Dict[str, Any]:
        return {
            "resourceType": "ResearchStudy",
            "id": study_id,
            "name": name,
            "description": description,
            "status": "active",
        }

    @staticmethod
    def patient(patient_id: str, identifiers: Optional[List[Tuple[str, str]]] = None) -> Dict[str, Any]:
        """Create a Patient with (system, value) identifiers."""
        return {
            "resourceType": "Patient",
            "id": patient_id,
            "identifier": [
                {"system": system, "value": value} for system, value in (identifiers or [])
            ],
        }

    @staticmethod
    def bundle(*resources: Dict[str, Any]) -> Dict[str, Any]:
        """Create a searchset Bundle."""
        return {
            "resourceType": "Bundle",
            "type": "searchset",
            "total": len(resources),
            "entry": [{"resource": resource} for resource in resources],
        }
