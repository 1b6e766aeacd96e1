"""
Custom exception hierarchy for the Bonus Engine backend.

All exceptions inherit from BonusEngineError so routes and the global
exception handler can catch them in one place and render a consistent
JSON body.

Exception Hierarchy:
    BonusEngineError (base)
    ├── ValidationError        (400)
    ├── ResourceNotFoundError  (404)
    ├── ConflictError          (409)
    ├── PersistenceError       (500)
    └── DatabaseError          (500)

Usage:
    from exceptions import ValidationError, ConflictError

    raise ValidationError("At least two purchases are required")
    raise ConflictError("Bonus group already redeemed", detail={"group_id": 12})
"""

from typing import Optional, Dict, Any


class BonusEngineError(Exception):
    """
    Base exception for all Bonus Engine application errors.

    Attributes:
        message: Human-readable error message, surfaced verbatim to callers
        detail: Optional dict with additional error context
        status_code: Suggested HTTP status code (for API errors)
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(BonusEngineError):
    """
    Raised when a request is rejected before any state change.

    Examples:
        raise ValidationError("Bundle must contain at least one purchase")
        raise ValidationError("Purchase already grouped", detail={"purchase_ids": [4]})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=400)


class ResourceNotFoundError(BonusEngineError):
    """
    Raised when a customer, purchase or bonus group doesn't exist.

    Examples:
        raise ResourceNotFoundError("Customer not found", detail={"customer_id": 7})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=404)


class ConflictError(BonusEngineError):
    """
    Raised when a write loses against concurrent or terminal state.

    Examples:
        raise ConflictError("Purchase was claimed by another bonus group")
        raise ConflictError("Bonus group already redeemed", detail={"group_id": 3})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=409)


class PersistenceError(BonusEngineError):
    """
    Raised when a draft could not be written.

    Draft autosave catches this locally and retries on the next change;
    it only reaches a caller on an explicit synchronous save.
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=500)


class DatabaseError(BonusEngineError):
    """
    Raised when database operations fail.

    Examples:
        raise DatabaseError("Failed to save bonus group")
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=500)
