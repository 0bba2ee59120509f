"""Error taxonomy for Testpad API calls and round orchestration.

Usage:
    from testpad_rounds.errors import InvalidCredential, RateLimited

    try:
        projects = await client.get_projects()
    except InvalidCredential:
        credentials.clear()
        raise
"""

from typing import Any, Dict, Optional


class TestpadError(Exception):
    """Base exception for all Testpad client errors."""

    # Not a test class, keep pytest from collecting it.
    __test__ = False

    status: int = 500

    def __init__(
        self,
        message: str,
        code: str = "TESTPAD_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether the user should be offered a retry action."""
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ============================================
# Authentication
# ============================================

class Unauthenticated(TestpadError):
    """No API key stored; the caller must send the user to connect."""

    status = 401

    def __init__(self, message: str = "No API key configured"):
        super().__init__(message, code="UNAUTHENTICATED")


class InvalidCredential(TestpadError):
    """The API rejected the stored key (HTTP 401)."""

    status = 401

    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message, code="INVALID_CREDENTIAL")


# ============================================
# Transport
# ============================================

class RateLimited(TestpadError):
    """HTTP 429. Handled by the retry policy, surfaced when retries run out."""

    status = 429

    def __init__(self, retry_after: float = 60, message: str = "Rate limit exceeded"):
        super().__init__(
            message,
            code="RATE_LIMITED",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return True


class ApiError(TestpadError):
    """Any other non-2xx response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(
            message,
            code="API_ERROR",
            details={"status_code": status_code},
        )
        self.status = status_code
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return True


class NetworkError(TestpadError):
    """DNS failure, refused connection, timeout and friends."""

    status = 0

    def __init__(self, message: str = "Network error. Please check your connection."):
        super().__init__(message, code="NETWORK_ERROR")

    @property
    def retryable(self) -> bool:
        return True


# ============================================
# Orchestration
# ============================================

class ValidationError(TestpadError):
    """Local precondition failed before anything was sent."""

    status = 422

    def __init__(self, message: str, step: str = "validation"):
        super().__init__(message, code="VALIDATION_ERROR", details={"step": step})


class DuplicationFailed(TestpadError):
    """Round creation aborted before any script was copied."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message, code="DUPLICATION_FAILED")
