# Workflow error taxonomy.
# Every error carries a stable code, an HTTP status and, for financial
# operations, the correlation id of the audit trail it was recorded under.

from typing import Optional


class WorkflowError(Exception):
    """Base class for typed workflow failures."""

    code = "WORKFLOW_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, correlation_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.message,
            "code": self.code,
            "transactionId": self.correlation_id,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    code = "VALIDATION_ERROR"
    status_code = 400


class UrlRequired(ValidationError):
    code = "URL_REQUIRED"


class InvalidUrlFormat(ValidationError):
    code = "INVALID_URL_FORMAT"


class PaymentStructureError(ValidationError):
    code = "INVALID_PAYMENT_STRUCTURE"


class NotFound(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateTransition(WorkflowError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class MilestoneOrderViolation(InvalidStateTransition):
    code = "MILESTONE_ORDER_VIOLATION"


class PaymentAttemptsExceeded(WorkflowError):
    code = "PAYMENT_ATTEMPTS_EXCEEDED"
    status_code = 409


class IntegrationFailure(WorkflowError):
    code = "INTEGRATION_FAILURE"
    status_code = 502
    retryable = True


class PublishingIntegrationError(IntegrationFailure):
    code = "PUBLISHING_INTEGRATION_ERROR"
    status_code = 500


class SignatureInvalid(WorkflowError):
    code = "SIGNATURE_INVALID"
    status_code = 400

    def __init__(self, correlation_id: Optional[str] = None):
        # Never echo what failed to match
        super().__init__("Invalid signature", correlation_id=correlation_id)


class RateLimited(WorkflowError):
    code = "RATE_LIMITED"
    status_code = 429


class AuditWriteError(WorkflowError):
    code = "AUDIT_WRITE_FAILED"
    status_code = 500


class ConfigurationError(WorkflowError):
    code = "CONFIGURATION_ERROR"
    status_code = 500
