"""
Error taxonomy for the coordination layer.

Every route returns exactly one of these kinds at its boundary; main.py maps
them to a JSON body of the form {"error": message, "kind": kind}.
"""
from typing import Any, Dict, Optional


class CoordinatorError(Exception):
    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CoordinatorError):
    """Malformed or missing fields, invalid role value, inactive discussion."""
    kind = "validation"
    status_code = 400


class AuthenticationError(CoordinatorError):
    """Signature does not recover to the primary or a registered delegate."""
    kind = "authentication"
    status_code = 401


class AuthorizationError(CoordinatorError):
    """Authenticated, but not allowed: wrong speaker, or action unverified on-chain."""
    kind = "authorization"
    status_code = 403


class NotFoundError(CoordinatorError):
    kind = "not_found"
    status_code = 404


class ProofTimeoutError(CoordinatorError):
    kind = "timeout"
    status_code = 504


class TransientChainError(CoordinatorError):
    """RPC failure or an unreadable chain head. Safe to retry."""
    kind = "transient_chain"
    status_code = 503


class ProofGenerationError(CoordinatorError):
    """The prover exited non-zero or produced unreadable output."""
    kind = "proof_failed"
    status_code = 502


class StoreUnavailableError(TransientChainError):
    """Secret/discussion store read or write failed. Same kind and status as a chain outage."""
