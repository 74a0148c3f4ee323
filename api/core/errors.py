"""
Client-facing API errors.

Routes and services raise these instead of `HTTPException` because every
error body on this API has the shape `{"error": ..., "details": ...}`.
`main.py` renders them with a single exception handler.
"""

from __future__ import annotations

from typing import Any


class ApiError(RuntimeError):
    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, details: Any = None, *, error: str | None = None) -> None:
        if error is not None:
            self.error = error
        self.details = details
        super().__init__(self.error if details is None else f"{self.error}: {details}")

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class FetchError(ApiError):
    """
    A read endpoint could not query the store.

    Only the generic message goes to the caller; the cause is logged.
    """

    status_code = 500

    def __init__(self, what: str) -> None:
        super().__init__(error=f"Failed to fetch {what}")
