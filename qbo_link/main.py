# qbo_link/main.py
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# load .env before Settings() is read
load_dotenv()

from qbo_link.config import Settings, settings as default_settings
from qbo_link.db import close_client, create_indexes
from qbo_link.errors import (
    AuthExchangeError,
    ConcurrencyConflictError,
    ConfigurationError,
    MissingCredentialsError,
    NotFoundError,
    QuickBooksError,
    QuickBooksUnauthorizedError,
    ReauthorizationRequiredError,
    RefreshFailedError,
    RemoteServiceError,
    TransportError,
    UnknownLineVariantError,
    UnsupportedOperationError,
    ValidationError,
)
from qbo_link.routes.quickbooks.auth import router as quickbooks_router
from qbo_link.routes.quickbooks.entities import router as entities_router
from qbo_link.routes.quickbooks.webhooks import router as webhooks_router
from qbo_link.services.credential_store import CredentialStore, InMemoryCredentialStore, MongoCredentialStore
from qbo_link.services.entity_service import EntityRequestEngine
from qbo_link.services.quickbooks_service import QuickBooksTransport
from qbo_link.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

# first match wins, so subclasses come before their bases
ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnknownLineVariantError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnsupportedOperationError, status.HTTP_400_BAD_REQUEST),
    (AuthExchangeError, status.HTTP_400_BAD_REQUEST),
    (MissingCredentialsError, status.HTTP_404_NOT_FOUND),
    (ReauthorizationRequiredError, status.HTTP_401_UNAUTHORIZED),
    (RefreshFailedError, status.HTTP_401_UNAUTHORIZED),
    (QuickBooksUnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
    (TransportError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RemoteServiceError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: QuickBooksError) -> int:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    app_settings: Optional[Settings] = None,
    store: Optional[CredentialStore] = None,
    transport: Optional[QuickBooksTransport] = None,
) -> FastAPI:
    app_settings = app_settings or default_settings
    use_mongo = store is None and app_settings.credential_store == "mongo"
    if store is None:
        store = MongoCredentialStore() if use_mongo else InMemoryCredentialStore()
    transport = transport or QuickBooksTransport(app_settings)
    token_manager = TokenLifecycleManager(app_settings, store, transport)

    app = FastAPI(
        title=app_settings.app_name,
        description="QuickBooks Online connection and entity API",
        version=app_settings.app_version,
    )
    app.state.settings = app_settings
    app.state.token_manager = token_manager
    app.state.entity_engine = EntityRequestEngine(app_settings, token_manager, transport)

    # CORS - tighten in production
    allowed_origins = os.getenv("ALLOWED_ORIGINS", "*")
    if allowed_origins == "*":
        cors_origins = ["*"]
    else:
        cors_origins = [o.strip() for o in allowed_origins.split(",")]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(quickbooks_router, prefix="/quickbooks")
    app.include_router(webhooks_router, prefix="/quickbooks")
    app.include_router(entities_router, prefix="/quickbooks/companies")

    @app.exception_handler(QuickBooksError)
    async def quickbooks_error_handler(request: Request, exc: QuickBooksError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("QuickBooks error on %s: %s", request.url.path, exc)
        content = {"success": False, "error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, ValidationError):
            content["problems"] = exc.problems
        return JSONResponse(status_code=status_code, content=jsonable_encoder(content))

    @app.on_event("startup")
    async def on_startup():
        if use_mongo:
            await create_indexes()

    @app.on_event("shutdown")
    async def on_shutdown():
        await transport.close()
        if use_mongo:
            close_client()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": f"Welcome to {app_settings.app_name}",
            "status": "running",
            "version": app_settings.app_version,
        }

    return app


app = create_app()
