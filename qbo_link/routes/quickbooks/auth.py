from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from jose import JWTError, jwt

from qbo_link.config import Settings
from qbo_link.errors import ConfigurationError, MissingCredentialsError
from qbo_link.models.quickbooks.token import TokenRecordPublic
from qbo_link.services.token_manager import TokenLifecycleManager

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_manager(request: Request) -> TokenLifecycleManager:
    return request.app.state.token_manager


def _state_secret(settings: Settings) -> str:
    if not settings.jwt_secret_key:
        raise ConfigurationError("JWT_SECRET_KEY is required to sign the OAuth state")
    return settings.jwt_secret_key


@router.get("/login")
async def login(
    redirect_uri: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    manager: TokenLifecycleManager = Depends(get_token_manager),
):
    """
    Returns the QuickBooks authorization URL.
    Optionally accepts a custom redirect_uri parameter to override the configured one.
    """
    state_data = {
        "nonce": datetime.now(timezone.utc).timestamp(),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.oauth_state_expire_minutes),
    }
    if redirect_uri:
        state_data["redirect_uri"] = redirect_uri

    state = jwt.encode(state_data, _state_secret(settings), algorithm=settings.jwt_algorithm)
    auth_url, _ = manager.build_authorization_url(state=state, redirect_uri=redirect_uri)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder({"success": True, "data": {"auth_url": auth_url}}),
    )


@router.get("/callback")
async def callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    manager: TokenLifecycleManager = Depends(get_token_manager),
):
    """
    Handles the callback from QuickBooks after the user authorizes the application
    and stores the token pair for the realm.
    """
    code = request.query_params.get("code")
    realm_id = request.query_params.get("realmId")
    state = request.query_params.get("state")

    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Authorization code not found in callback.")
    if not realm_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Realm ID not found in callback.")
    if not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="State parameter not found in callback.")

    try:
        state_data = jwt.decode(state, _state_secret(settings), algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid state parameter.")

    record = await manager.exchange_authorization_code(code, realm_id, state_data.get("redirect_uri"))
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder(
            {
                "success": True,
                "data": {
                    "message": "QuickBooks tokens stored successfully",
                    "realm_id": realm_id,
                    # token values are never echoed back
                    "token": TokenRecordPublic.from_record(record),
                },
            }
        ),
    )


@router.get("/tokens/{realm_id}")
async def get_token_by_realm(realm_id: str, manager: TokenLifecycleManager = Depends(get_token_manager)):
    """
    Retrieves the stored QuickBooks token status for a specific realm/company.
    """
    record = await manager.store.fetch(realm_id)
    if record is None:
        raise MissingCredentialsError(realm_id)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder({"success": True, "data": {"token": TokenRecordPublic.from_record(record)}}),
    )


@router.post("/{realm_id}/disconnect")
async def disconnect(realm_id: str, manager: TokenLifecycleManager = Depends(get_token_manager)):
    await manager.revoke(realm_id)
    await manager.store.deactivate(realm_id)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder({"success": True, "data": {"realm_id": realm_id, "disconnected": True}}),
    )
