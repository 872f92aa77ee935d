from typing import Optional, Dict, Any

class TradiePayException(Exception):
    """Base exception for all TradiePay errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

class ConfigurationError(TradiePayException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str = "Server configuration error", code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)

class WebhookSignatureError(TradiePayException):
    """Raised when a webhook delivery cannot be authenticated under any trust domain."""
    def __init__(self, message: str = "Invalid signature", code: str = "invalid_signature", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=400, details=details)

class WebhookPayloadError(TradiePayException):
    """Raised when an authenticated webhook body is not a usable event."""
    def __init__(self, message: str = "Invalid payload", code: str = "invalid_payload", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=400, details=details)

class ResourceNotFoundError(TradiePayException):
    """Raised when a requested resource is not found."""
    def __init__(self, message: str, code: str = "not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=404, details=details)

class PersistenceError(TradiePayException):
    """Raised when the store is unreachable or rejects a write."""
    def __init__(self, message: str = "Failed to update invoice", code: str = "persistence_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)

class StaleWriteError(TradiePayException):
    """Raised when a version-guarded update matched no row because another writer won."""
    def __init__(self, message: str, code: str = "stale_write", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=409, details=details)

class ExternalAPIError(TradiePayException):
    """Raised when the payment provider API fails."""
    def __init__(self, message: str, code: str = "external_api_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)
