"""
Keyed pseudonymization of subject identifiers.
"""

import hashlib
import hmac
from typing import Any, Dict, Optional

from shared.errors import PseudonymizationError


class Pseudonymizer:
    """Replace identifier values with a keyed SHA-256 digest.

    The same key and value always give the same pseudonym, so cohorts built in
    different runs can be linked without exposing the original value.
    """

    def __init__(self, key: Optional[str]):
        self._key = key.encode("utf-8") if key else None

    def pseudonymize(self, identifier: Dict[str, Any]) -> Dict[str, Any]:
        if self._key is None:
            raise PseudonymizationError("No pseudonymization key configured")

        value = identifier.get("value") if isinstance(identifier, dict) else None
        if not isinstance(value, str) or not value:
            raise PseudonymizationError(
                "Identifier has no value to pseudonymize",
                details={"system": identifier.get("system") if isinstance(identifier, dict) else None}
            )

        digest = hmac.new(self._key, value.encode("utf-8"), hashlib.sha256).hexdigest()
        pseudonym: Dict[str, Any] = {"value": digest}
        if identifier.get("system") is not None:
            pseudonym["system"] = identifier["system"]
        return pseudonym
