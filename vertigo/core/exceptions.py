"""Core exceptions for the proxy."""

from typing import Any, Optional

from fastapi import HTTPException


class ProxyError(Exception):
    """Base exception for proxy errors."""

    status_code = 500
    error_type = "server_error"
    code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_error_body(self) -> dict[str, Any]:
        """Render the error in the OpenAI error envelope."""
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_error_body())


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""

    code = "configuration_error"


class MalformedRequestError(ProxyError):
    """Raised when an incoming request body cannot be parsed or validated."""

    status_code = 400
    error_type = "invalid_request_error"
    code = "invalid_request"


class ModelNotFoundError(ProxyError):
    """Raised when a requested model is not in the advertised model list."""

    status_code = 404
    error_type = "invalid_request_error"
    code = "model_not_found"


class ConversationNotFoundError(ProxyError):
    """Raised when deleting a conversation that does not exist."""

    status_code = 404
    error_type = "invalid_request_error"
    code = "conversation_not_found"


class NoCredentialAvailable(ProxyError):
    """Every credential in the pool is quarantined."""

    status_code = 503
    error_type = "upstream_unavailable"
    code = "no_credential_available"

    def __init__(self, message: str = "No upstream credential is currently available") -> None:
        super().__init__(message)


class UpstreamFailure(ProxyError):
    """Network error, timeout, or non-success status from the upstream."""

    status_code = 502
    error_type = "upstream_error"
    code = "upstream_failure"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[bytes] = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class TranslationFailure(ProxyError):
    """The upstream payload did not have the expected shape."""

    status_code = 502
    error_type = "upstream_error"
    code = "translation_failure"


class StoreFailure(ProxyError):
    """A conversation store read or write failed."""

    code = "store_failure"
