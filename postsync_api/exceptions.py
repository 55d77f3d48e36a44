from typing import Optional


class PaymentAPIError(Exception):
    """Base error carried through to the HTTP layer as a `success: false` envelope."""

    status_code = 500
    default_message = "Payment request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str]:
        return {}

    def to_response(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PaymentAPIError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(PaymentAPIError):
    status_code = 400
    default_message = "Invalid signature"


class NotFoundError(PaymentAPIError):
    status_code = 404
    default_message = "Not found"


class RateLimitError(PaymentAPIError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamError(PaymentAPIError):
    status_code = 500
    default_message = "Payment gateway request failed"


class PersistenceError(PaymentAPIError):
    status_code = 500
    default_message = "Failed to persist payment state"


class ConfigurationError(Exception):
    """Raised at start-up when required environment configuration is absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required environment variables: {', '.join(self.missing)}")
