from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class Scope(str, Enum):
    ACCOUNTING = "com.intuit.quickbooks.accounting"
    PAYMENT = "com.intuit.quickbooks.payment"
    PAYROLL = "com.intuit.quickbooks.payroll"
    TIME_TRACKING = "com.intuit.quickbooks.payroll.timetracking"
    BENEFITS = "com.intuit.quickbooks.payroll.benefits"
    OPENID = "openid"
    PROFILE = "profile"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    INTUIT_NAME = "intuit_name"


DEFAULT_SCOPES = [
    Scope.ACCOUNTING.value,
    Scope.OPENID.value,
    Scope.PROFILE.value,
    Scope.EMAIL.value,
]


class Settings(BaseSettings):
    app_name: str = "qbo-link"
    app_version: str = "1.0.0"
    debug: bool = False

    # QuickBooks
    quickbooks_client_id: str = ""
    quickbooks_client_secret: str = ""
    quickbooks_redirect_uri: str = ""
    quickbooks_environment: str = "sandbox"
    quickbooks_minor_version: Optional[int] = 75
    quickbooks_scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    quickbooks_refresh_buffer_seconds: int = 60
    quickbooks_timeout_seconds: float = 40.0
    quickbooks_max_retries: int = 3
    quickbooks_retry_backoff_seconds: float = 0.5
    quickbooks_webhook_verifier_token: Optional[str] = None

    # "memory" or "mongo"
    credential_store: str = "memory"
    mongo_uri: Optional[str] = None
    mongo_db_name: Optional[str] = None

    # signs the OAuth state parameter handed to the authorization redirect
    jwt_secret_key: Optional[str] = None
    jwt_algorithm: str = "HS256"
    oauth_state_expire_minutes: int = 10

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def use_production(self) -> bool:
        return self.quickbooks_environment.strip().lower() in {"production", "prod", "live"}


settings = Settings()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)
