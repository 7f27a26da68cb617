"""Error taxonomy for action resolution, planning and submission."""
from typing import Any, Dict, Optional


class AmmError(Exception):
    """Base error; carries a stable kind and the HTTP status it maps to."""

    kind = "AmmError"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        """Discriminated failure body returned by the HTTP layer."""
        return {"success": False, "kind": self.kind, "message": self.message}


class MissingInput(AmmError):
    kind = "MissingInput"
    status_code = 400


class MissingPoolContext(AmmError):
    kind = "MissingPoolContext"
    status_code = 400


class CompletionUnavailable(AmmError):
    kind = "CompletionUnavailable"
    status_code = 500


class CompletionAuthFailed(CompletionUnavailable):
    kind = "CompletionAuthFailed"
    status_code = 401


class CompletionRateLimited(CompletionUnavailable):
    kind = "CompletionRateLimited"
    status_code = 429


class MalformedModelResponse(AmmError):
    kind = "MalformedModelResponse"
    status_code = 500


class UserInstructionUnclear(AmmError):
    kind = "UserInstructionUnclear"
    status_code = 400


class InvalidFunction(AmmError):
    kind = "InvalidFunction"
    status_code = 400


class MissingParameters(AmmError):
    kind = "MissingParameters"
    status_code = 400


class InvalidParameters(AmmError):
    kind = "InvalidParameters"
    status_code = 400


class UnknownToken(AmmError):
    kind = "UnknownToken"
    status_code = 400


class InsufficientReserves(AmmError):
    kind = "InsufficientReserves"
    status_code = 400


class InsufficientLiquidity(AmmError):
    kind = "InsufficientLiquidity"
    status_code = 400


class LedgerRejected(AmmError):
    kind = "LedgerRejected"
    status_code = 400


class LedgerReverted(AmmError):
    kind = "LedgerReverted"
    status_code = 500
