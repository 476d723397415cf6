"""
Reduction of child outcomes for combination nodes.
"""

from typing import Iterable

from .models import Operator


def reduce(results: Iterable[bool], op: Operator) -> bool:
    """Combine child outcomes per ``op``.

    AND is vacuously true, OR and XOR are vacuously false. XOR means
    exactly one true child, not pairwise parity.
    """
    values = [bool(value) for value in results]

    if op == Operator.AND:
        return all(values)
    if op == Operator.OR:
        return any(values)
    if op == Operator.XOR:
        return values.count(True) == 1
    return False
