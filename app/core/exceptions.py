"""
Service-level errors with stable, machine-readable codes.

Every error raised by the services layer carries a ``code`` that callers can
switch on, an HTTP-style ``status_code`` and a human readable ``message``.
The FastAPI app renders them as ``{"error": {"code", "message", "details"}}``.
"""
from typing import Any, Dict, Optional


class ReferralServiceError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


# --- Validation ---
class InvalidRequestError(ReferralServiceError):
    code = "INVALID_REQUEST"
    status_code = 400
    default_message = "Invalid request"


class RateLimitedError(ReferralServiceError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, *, retry_after_seconds: int, details: Optional[Dict[str, Any]] = None):
        self.retry_after_seconds = retry_after_seconds
        merged = {"retryAfterSeconds": retry_after_seconds}
        if details:
            merged.update(details)
        super().__init__(message, details=merged)


# --- Business rules ---
class ReferralCodeNotFoundError(ReferralServiceError):
    code = "REFERRAL_CODE_NOT_FOUND"
    status_code = 404
    default_message = "The referral code does not exist or has expired"


class SelfReferralError(ReferralServiceError):
    code = "SELF_REFERRAL"
    status_code = 400
    default_message = "Users cannot refer themselves"


class ReferralCapReachedError(ReferralServiceError):
    code = "REFERRAL_CAP_REACHED"
    status_code = 400
    default_message = "This referrer has reached their maximum number of referrals"


class ClaimConflictError(ReferralServiceError):
    """Serialization conflict that survived the automatic retry. Safe to retry."""
    code = "CLAIM_CONFLICT"
    status_code = 409
    default_message = "The claim conflicted with a concurrent request. Please retry."


# --- Lookups ---
class TenantNotFoundError(ReferralServiceError):
    code = "TENANT_NOT_FOUND"
    status_code = 404
    default_message = "Tenant not found"


class UserNotFoundError(ReferralServiceError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "User not found"


class EventNotFoundError(ReferralServiceError):
    code = "EVENT_NOT_FOUND"
    status_code = 404
    default_message = "Event not found or does not belong to this tenant"


class LedgerEntryNotFoundError(ReferralServiceError):
    code = "LEDGER_ENTRY_NOT_FOUND"
    status_code = 404
    default_message = "Ledger entry not found"


class WebhookNotConfiguredError(ReferralServiceError):
    code = "WEBHOOK_NOT_CONFIGURED"
    status_code = 400
    default_message = "Webhook URL is not configured for this tenant"


class InvalidWebhookUrlError(ReferralServiceError):
    code = "INVALID_WEBHOOK_URL"
    status_code = 400
    default_message = "Invalid webhook URL"


# --- Authentication ---
class MissingApiKeyError(ReferralServiceError):
    code = "MISSING_API_KEY"
    status_code = 401
    default_message = "API key is required in Authorization header"


class InvalidApiKeyError(ReferralServiceError):
    code = "INVALID_API_KEY"
    status_code = 401
    default_message = "The provided API key is invalid or has been revoked"


class InsufficientScopeError(ReferralServiceError):
    code = "INSUFFICIENT_SCOPE"
    status_code = 403
    default_message = "The API key does not have the required scope"
