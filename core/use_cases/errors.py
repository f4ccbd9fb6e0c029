"""Domain errors. The web layer maps each class to one HTTP status."""


class DomainError(Exception):
    code = "ERROR"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"


class AuthenticationError(DomainError):
    code = "UNAUTHORIZED"


class AuthorizationError(DomainError):
    code = "FORBIDDEN"


class NotFoundError(DomainError):
    code = "NOT_FOUND"


class ConflictError(DomainError):
    code = "CONFLICT"


class InsufficientCreditsError(ConflictError):
    code = "INSUFFICIENT_CREDITS"


class PaymentProviderError(DomainError):
    code = "PAYMENT_PROVIDER_ERROR"


class WebhookSignatureError(ValidationError):
    code = "INVALID_SIGNATURE"
