"""
Error taxonomy for the entitlement engine.

Every error carries a stable machine code and the HTTP status the API layer
renders it with. Services raise these; routes never build them by hand.
"""
from typing import Optional, Dict, Any


class EntitlementError(Exception):
    """Base class for all subscription and publishing-rights errors."""

    code = "entitlement_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class NotFoundError(EntitlementError):
    code = "not_found"
    status_code = 404


class PlanNotFoundError(NotFoundError):
    code = "plan_not_found"


class LedgerEntryNotFoundError(NotFoundError):
    code = "subscription_not_found"


class ConflictError(EntitlementError):
    code = "conflict"
    status_code = 409


class DuplicateCorrelationError(ConflictError):
    code = "duplicate_correlation"


class ActiveSubscriptionExistsError(ConflictError):
    code = "active_subscription_exists"


class InvalidTransitionError(ConflictError):
    code = "invalid_status_transition"


class LimitExceededError(EntitlementError):
    """Expected business outcome: the user has no publishing capacity left."""

    code = "publishing_limit_reached"
    status_code = 403


class ValidationError(EntitlementError):
    code = "validation_error"
    status_code = 400


class InvalidPlanTypeError(ValidationError):
    code = "invalid_plan_type"


class PlanValidationError(ValidationError):
    code = "invalid_plan"


class InvalidWebhookSignatureError(EntitlementError):
    code = "invalid_webhook_signature"
    status_code = 400


class MissingCorrelationMetadataError(EntitlementError):
    """Raised inside the reconciler only; the event is logged and dropped."""

    code = "missing_correlation_metadata"
    status_code = 200


class PaymentProviderError(EntitlementError):
    code = "payment_provider_error"
    status_code = 502
