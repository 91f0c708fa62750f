from typing import Any, Dict, List, Optional


class QuickBooksError(Exception):
    """Base class for every error raised by qbo-link."""


class ConfigurationError(QuickBooksError):
    """Raised when the client id, secret or redirect URI are missing."""


class AuthExchangeError(QuickBooksError):
    """Raised when an authorization code cannot be exchanged for tokens."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class RefreshFailedError(QuickBooksError):
    """Raised when the service rejects a refresh token. Stored credentials are kept."""

    def __init__(self, realm_id: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(f"Token refresh rejected for realm {realm_id}")
        self.realm_id = realm_id
        self.status_code = status_code
        self.payload = payload


class ReauthorizationRequiredError(QuickBooksError):
    """Raised when the refresh token itself has expired."""

    def __init__(self, realm_id: str):
        super().__init__(f"Refresh token expired for realm {realm_id}; re-authorization required")
        self.realm_id = realm_id


class MissingCredentialsError(QuickBooksError):
    def __init__(self, realm_id: str, message: Optional[str] = None):
        super().__init__(message or f"No stored QuickBooks credentials for realm {realm_id}")
        self.realm_id = realm_id


class ValidationError(QuickBooksError):
    """Client-side schema violation. Never sent to the network."""

    def __init__(self, entity_type: str, problems: List[str]):
        super().__init__(f"{entity_type}: " + "; ".join(problems))
        self.entity_type = entity_type
        self.problems = problems


class UnsupportedOperationError(QuickBooksError):
    def __init__(self, entity_type: str, operation: str):
        super().__init__(f"{operation} is not supported for {entity_type}")
        self.entity_type = entity_type
        self.operation = operation


class UnknownLineVariantError(QuickBooksError):
    def __init__(self, entity_type: str, detail_type: Optional[str]):
        super().__init__(f"{entity_type} does not accept line DetailType {detail_type!r}")
        self.entity_type = entity_type
        self.detail_type = detail_type


class TransportError(QuickBooksError):
    """Network level failure (timeout, connection reset)."""


class RemoteServiceError(QuickBooksError):
    """Any non-2xx response not covered by a more specific error."""

    def __init__(self, status_code: int, payload: Any = None, message: Optional[str] = None):
        super().__init__(message or f"QuickBooks returned HTTP {status_code}")
        self.status_code = status_code
        self.payload = payload

    @property
    def fault_errors(self) -> List[Dict[str, Any]]:
        if not isinstance(self.payload, dict):
            return []
        fault = self.payload.get("Fault") or self.payload.get("fault") or {}
        errors = fault.get("Error") or fault.get("error") or []
        return errors if isinstance(errors, list) else [errors]


class QuickBooksUnauthorizedError(RemoteServiceError):
    """Raised when QuickBooks returns 401/authorization errors."""


class NotFoundError(RemoteServiceError):
    pass


class ConcurrencyConflictError(RemoteServiceError):
    """The update used a stale SyncToken."""
