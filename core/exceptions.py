"""
Custom exception classes and error handling.

Provides consistent error responses across the API.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class WebhookSignatureError(APIException):
    """Inbound webhook failed signature verification (missing, malformed or mismatched)."""

    def __init__(self, detail: str = "Invalid signature", reason: Optional[str] = None):
        error_code = f"WEBHOOK_SIGNATURE_{reason.upper()}" if reason else "WEBHOOK_SIGNATURE"
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class WebhookUnauthorizedError(APIException):
    """Direct-provider webhook rejected because its signature could not be verified."""

    def __init__(self, detail: str = "Invalid signature"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="WEBHOOK_UNAUTHORIZED"
        )


class ProviderAPIError(Exception):
    """Outbound provider request failed (timeout, transport or non-2xx status)."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
