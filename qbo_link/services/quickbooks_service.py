import base64
import hashlib
import hmac
import logging
import secrets
import urllib.parse
from typing import Any, Dict, Iterable, Optional

import httpx

from qbo_link.config import Settings
from qbo_link.errors import (
    ConcurrencyConflictError,
    ConfigurationError,
    NotFoundError,
    QuickBooksUnauthorizedError,
    RemoteServiceError,
    TransportError,
)

AUTH_BASE_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
JWKS_URL = "https://oauth.platform.intuit.com/op/v1/jwks"
ID_TOKEN_ISSUER = "https://oauth.platform.intuit.com/op/v1"
USER_INFO_URLS = {
    "production": "https://accounts.platform.intuit.com/v1/openid_connect/userinfo",
    "sandbox": "https://sandbox-accounts.platform.intuit.com/v1/openid_connect/userinfo",
}

API_BASE_URLS = {
    "production": "https://quickbooks.api.intuit.com",
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
}

# Fault codes returned inside a 400 body
STALE_OBJECT_CODES = {"5010"}
OBJECT_NOT_FOUND_CODES = {"610"}

logger = logging.getLogger(__name__)


def _basic_auth_header(settings: Settings) -> str:
    if not settings.quickbooks_client_id or not settings.quickbooks_client_secret:
        raise ConfigurationError("QUICKBOOKS_CLIENT_ID and QUICKBOOKS_CLIENT_SECRET are required")
    credentials = f"{settings.quickbooks_client_id}:{settings.quickbooks_client_secret}"
    return base64.b64encode(credentials.encode()).decode()


def get_api_base_url(settings: Settings) -> str:
    return API_BASE_URLS["production" if settings.use_production else "sandbox"]


def company_url(settings: Settings, realm_id: str, path: str) -> str:
    return f"{get_api_base_url(settings)}/v3/company/{realm_id}/{path.lstrip('/')}"


def get_user_info_url(settings: Settings) -> str:
    return USER_INFO_URLS["production" if settings.use_production else "sandbox"]


def get_authorization_url(
    settings: Settings,
    state: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scopes: Optional[Iterable[str]] = None,
) -> str:
    """
    Build the authorization URL used to start the OAuth2 flow.
    """
    if not settings.quickbooks_client_id:
        raise ConfigurationError("QUICKBOOKS_CLIENT_ID is required")
    callback_uri = redirect_uri or settings.quickbooks_redirect_uri
    if not callback_uri:
        raise ConfigurationError("QUICKBOOKS_REDIRECT_URI is required")
    chosen_scopes = list(scopes) if scopes else list(settings.quickbooks_scopes)

    query = urllib.parse.urlencode(
        {
            "client_id": settings.quickbooks_client_id,
            "redirect_uri": callback_uri,
            "response_type": "code",
            "scope": " ".join(chosen_scopes),
            "state": state or generate_state(),
        },
        quote_via=urllib.parse.quote,
    )
    logger.info("Generated QuickBooks auth URL with redirect %s", callback_uri)
    return f"{AUTH_BASE_URL}?{query}"


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _fault_codes(payload: Any) -> set:
    if not isinstance(payload, dict):
        return set()
    fault = payload.get("Fault") or payload.get("fault") or {}
    errors = fault.get("Error") or fault.get("error") or []
    if isinstance(errors, dict):
        errors = [errors]
    return {str(error.get("code")) for error in errors if isinstance(error, dict)}


def raise_for_qbo_status(response: httpx.Response) -> None:
    """Translate a non-2xx QuickBooks API response into a typed error."""
    if response.status_code < 400:
        return

    payload = response_payload(response)
    codes = _fault_codes(payload)

    if response.status_code in {401, 403}:
        logger.warning("QuickBooks unauthorized response: %s", response.text)
        raise QuickBooksUnauthorizedError(response.status_code, payload)

    if response.status_code == 404 or codes & OBJECT_NOT_FOUND_CODES:
        raise NotFoundError(response.status_code, payload, message="QuickBooks object not found")

    if codes & STALE_OBJECT_CODES:
        raise ConcurrencyConflictError(
            response.status_code, payload, message="Stale SyncToken; re-read the entity before updating"
        )

    logger.error("QuickBooks API error (%s): %s", response.status_code, response.text)
    raise RemoteServiceError(response.status_code, payload)


class QuickBooksTransport:
    """Thin async HTTP layer. Pass ``client`` to share a connection pool or to test."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Any = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, headers=headers, params=params, json=json_payload, data=data, files=files
                )
            async with httpx.AsyncClient(timeout=self.settings.quickbooks_timeout_seconds) as client:
                return await client.request(
                    method, url, headers=headers, params=params, json=json_payload, data=data, files=files
                )
        except httpx.TransportError as exc:
            logger.exception("QuickBooks request failed: %s %s", method, url)
            raise TransportError(f"Failed to reach QuickBooks: {method} {url}") from exc

    async def post_token_endpoint(self, url: str, data: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Basic {_basic_auth_header(self.settings)}",
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        return await self.request("POST", url, headers=headers, data=data)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def verify_webhook_signature(body: bytes, signature: Optional[str], verifier_token: Optional[str]) -> bool:
    """Check the ``intuit-signature`` header against the raw notification body."""
    if not signature or not verifier_token:
        return False
    digest = hmac.new(verifier_token.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature)
