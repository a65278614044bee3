from typing import Optional


class GatewayError(Exception):
    """Base class for errors raised by the registry gateway."""
    pass


class SerializationError(GatewayError):
    """Raised when a document cannot be turned into a JSON payload."""
    pass


class SubmissionFailed(GatewayError):
    """Raised when the registry call fails at the transport or HTTP level."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text
