"""
Error taxonomy for the renovation tracker core.

Three failure families reach the UI layer:

- ValidationError: bad input, raised before any external call is made
- NotFoundError: a referenced entity is gone; callers reconcile local state
- ExternalFailure: a collaborator returned an error or timed out; retry-able

Every error carries a stable ``code`` for programmatic handling and a
human-readable ``message``.
"""

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base class for all tracker errors."""

    default_code = "error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to JSON-serializable dictionary.

        Returns
        -------
        dict
            ``{"error": <class name>, "code": ..., "message": ...}``
        """
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }


class ValidationError(TrackerError):
    """Invalid status/weight, missing title, missing scope, illegal transition."""

    default_code = "invalid"


class NotFoundError(TrackerError):
    """Referenced entity does not exist (anymore)."""

    default_code = "not_found"

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(message or f"{entity} {entity_id} not found", "not_found")
        self.entity = entity
        self.entity_id = entity_id


class ExternalFailure(TrackerError):
    """Persistence or another collaborator failed; the operation may be retried."""

    default_code = "external_failure"

    def __init__(
        self,
        message: str = "Could not reach storage, please retry.",
        code: Optional[str] = None,
        cause: Any = None,
    ) -> None:
        super().__init__(message, code)
        self.cause = cause
