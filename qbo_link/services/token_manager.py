"""OAuth2 token lifecycle for QuickBooks realms.

Every realm has at most one refresh in flight. Callers that find the access
token expired while a refresh for the same realm is running await that
refresh instead of starting their own: the service rotates the refresh token
on every use, so a second concurrent refresh would present a token that has
just been invalidated.
"""
import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import pydantic
from jose import JWTError, jwt

from qbo_link.config import Settings, _now_utc
from qbo_link.errors import (
    AuthExchangeError,
    MissingCredentialsError,
    ReauthorizationRequiredError,
    RefreshFailedError,
    RemoteServiceError,
)
from qbo_link.models.quickbooks.token import TokenRecord, TokenResponse
from qbo_link.services.credential_store import CredentialStore
from qbo_link.services.quickbooks_service import (
    ID_TOKEN_ISSUER,
    JWKS_URL,
    REVOKE_URL,
    TOKEN_URL,
    QuickBooksTransport,
    generate_state,
    get_authorization_url,
    get_user_info_url,
    raise_for_qbo_status,
    response_payload,
)

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        transport: Optional[QuickBooksTransport] = None,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self.settings = settings
        self.store = store
        self.transport = transport or QuickBooksTransport(settings)
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}

    # -----------------------
    # Authorization code flow
    # -----------------------
    def build_authorization_url(
        self,
        state: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
        redirect_uri: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Return the consent URL and the state value it carries.

        The caller is responsible for matching the state on callback.
        """
        state = state or generate_state()
        url = get_authorization_url(self.settings, state=state, redirect_uri=redirect_uri, scopes=scopes)
        return url, state

    async def exchange_authorization_code(
        self, code: str, realm_id: str, redirect_uri: Optional[str] = None
    ) -> TokenRecord:
        """
        Exchange an authorization code for a token pair and persist it for the realm.
        """
        if not code or not realm_id:
            raise AuthExchangeError("Authorization code and realm id are required")

        issued_at = self._clock()
        response = await self.transport.post_token_endpoint(
            TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.settings.quickbooks_redirect_uri,
            },
        )
        if not response.is_success:
            logger.error("QuickBooks token exchange error: %s", response.text)
            raise AuthExchangeError(
                f"Authorization code exchange failed with HTTP {response.status_code}",
                response.status_code,
                response_payload(response),
            )

        try:
            token = TokenResponse(**response.json())
            record = TokenRecord.from_response(realm_id, token, issued_at)
        except (ValueError, pydantic.ValidationError) as exc:
            raise AuthExchangeError("Malformed token response", response.status_code, response.text) from exc

        saved = await self.store.save(record.realm_id, record)
        logger.info(
            "QuickBooks token exchange succeeded for realm %s; expires_in=%s x_refresh_token_expires_in=%s",
            realm_id,
            token.expires_in,
            token.x_refresh_token_expires_in,
        )
        return saved

    # -----------------------
    # Valid token / refresh
    # -----------------------
    async def get_valid_token(self, realm_id: str) -> TokenRecord:
        realm_id = str(realm_id)
        record = await self._load(realm_id)
        if record.access_expired(self._clock(), self.settings.quickbooks_refresh_buffer_seconds):
            record = await self._refresh_once(realm_id, force=False)
        return record

    async def refresh(self, realm_id: str) -> TokenRecord:
        """Exchange the stored refresh token for a new pair regardless of expiry."""
        return await self._refresh_once(str(realm_id), force=True)

    async def _load(self, realm_id: str) -> TokenRecord:
        record = await self.store.fetch(realm_id)
        if record is None:
            raise MissingCredentialsError(realm_id)
        if record.refresh_expired(self._clock()):
            raise ReauthorizationRequiredError(realm_id)
        return record

    async def _refresh_once(self, realm_id: str, force: bool) -> TokenRecord:
        task = self._inflight.get(realm_id)
        if task is None:
            task = asyncio.ensure_future(self._perform_refresh(realm_id, force))
            self._inflight[realm_id] = task
            task.add_done_callback(partial(self._clear_inflight, realm_id))
        # shield: a caller giving up must not cancel the refresh other callers wait on
        return await asyncio.shield(task)

    def _clear_inflight(self, realm_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(realm_id) is task:
            del self._inflight[realm_id]
        if not task.cancelled():
            # mark retrieved; waiters (if any) get it through the shield
            task.exception()

    async def _perform_refresh(self, realm_id: str, force: bool) -> TokenRecord:
        record = await self._load(realm_id)
        if not force and not record.access_expired(
            self._clock(), self.settings.quickbooks_refresh_buffer_seconds
        ):
            return record

        logger.info("Refreshing QuickBooks access token for realm %s", realm_id)
        issued_at = self._clock()
        response = await self.transport.post_token_endpoint(
            TOKEN_URL,
            {"grant_type": "refresh_token", "refresh_token": record.refresh_token},
        )
        if not response.is_success:
            logger.error("QuickBooks refresh error for realm %s: %s", realm_id, response.text)
            raise RefreshFailedError(realm_id, response.status_code, response_payload(response))

        try:
            token = TokenResponse(**response.json())
            refreshed = TokenRecord.from_response(realm_id, token, issued_at)
        except (ValueError, pydantic.ValidationError) as exc:
            raise RefreshFailedError(realm_id, response.status_code, response.text) from exc

        if refreshed.id_token is None:
            refreshed = refreshed.model_copy(update={"id_token": record.id_token})
        saved = await self.store.save(realm_id, refreshed)
        logger.info(
            "QuickBooks token refreshed for realm %s; expires_in=%s x_refresh_token_expires_in=%s",
            realm_id,
            token.expires_in,
            token.x_refresh_token_expires_in,
        )
        return saved

    # -----------------------
    # Revocation / OpenID
    # -----------------------
    async def revoke(self, realm_id: str, use_refresh: bool = True) -> None:
        """Revoke the realm's refresh token (which also kills its access token) or just the access token."""
        realm_id = str(realm_id)
        record = await self.store.fetch(realm_id)
        if record is None:
            raise MissingCredentialsError(realm_id)

        token = record.refresh_token if use_refresh else record.access_token
        response = await self.transport.post_token_endpoint(REVOKE_URL, {"token": token})
        if not response.is_success:
            logger.error("QuickBooks revoke error for realm %s: %s", realm_id, response.text)
            raise RemoteServiceError(response.status_code, response_payload(response))
        logger.info("QuickBooks access revoked for realm %s", realm_id)

    async def validate_id_token(self, realm_id: str) -> bool:
        """Verify the stored OpenID id_token: signature (JWKS), issuer, audience, expiry."""
        realm_id = str(realm_id)
        record = await self.store.fetch(realm_id)
        if record is None or not record.id_token:
            raise MissingCredentialsError(realm_id, f"No id_token stored for realm {realm_id}")

        response = await self.transport.request("GET", JWKS_URL, headers={"Accept": "application/json"})
        if not response.is_success:
            raise RemoteServiceError(response.status_code, response_payload(response))

        try:
            jwt.decode(
                record.id_token,
                response.json(),
                algorithms=["RS256"],
                audience=self.settings.quickbooks_client_id,
                issuer=ID_TOKEN_ISSUER,
                options={"verify_at_hash": False},
            )
        except JWTError as exc:
            logger.warning("QuickBooks id_token rejected for realm %s: %s", realm_id, exc)
            return False
        return True

    async def get_user_info(self, realm_id: str) -> Dict[str, Any]:
        """OpenID profile of the user who connected the realm; needs the ``openid`` scopes."""
        record = await self.get_valid_token(realm_id)
        response = await self.transport.request(
            "GET",
            get_user_info_url(self.settings),
            headers={"Authorization": f"Bearer {record.access_token}", "Accept": "application/json"},
        )
        raise_for_qbo_status(response)
        return response.json()
