"""
Cohort Eligibility Service package.

Determines which subjects satisfy a FHIR EvidenceVariable eligibility
definition and returns them as a Group of pseudonymized identifiers.

- app.main: API surface for cohort evaluation and health.
- app.criteria: Criteria tree model, operator reduction, reference
  resolution and the recursive evaluator.
- app.adapters: HTTP clients for the FHIR store and the remote CQL engine.
- app.cohort: Per-subject assembly loop and pseudonymization.

Guidelines:
- Criteria trees are immutable once parsed; share them across subjects.
- Remote rule evaluation failures abort the whole run; lookups of
  definitional resources never do.
"""
