from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class TokenResponse(BaseModel):
    """Body returned by the OAuth2 token endpoint for both grant types."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    x_refresh_token_expires_in: int
    id_token: Optional[str] = None

    class Config:
        extra = "ignore"


class TokenRecord(BaseModel):
    realm_id: str
    access_token: str
    refresh_token: str
    id_token: Optional[str] = None
    token_type: str = "bearer"
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime

    @model_validator(mode="after")
    def _access_expires_first(self) -> "TokenRecord":
        if self.access_expires_at > self.refresh_expires_at:
            raise ValueError("access token cannot outlive its refresh token")
        return self

    @classmethod
    def from_response(cls, realm_id: str, response: TokenResponse, issued_at: datetime) -> "TokenRecord":
        return cls(
            realm_id=str(realm_id),
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            id_token=response.id_token,
            token_type=response.token_type,
            issued_at=issued_at,
            access_expires_at=issued_at + timedelta(seconds=response.expires_in),
            refresh_expires_at=issued_at + timedelta(seconds=response.x_refresh_token_expires_in),
        )

    def access_expired(self, now: datetime, buffer_seconds: int = 0) -> bool:
        return now >= self.access_expires_at - timedelta(seconds=max(buffer_seconds, 0))

    def refresh_expired(self, now: datetime) -> bool:
        return now >= self.refresh_expires_at


class TokenRecordPublic(BaseModel):
    realm_id: str
    token_type: str
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime
    has_id_token: bool = Field(default=False)

    @classmethod
    def from_record(cls, record: TokenRecord) -> "TokenRecordPublic":
        return cls(
            realm_id=record.realm_id,
            token_type=record.token_type,
            issued_at=record.issued_at,
            access_expires_at=record.access_expires_at,
            refresh_expires_at=record.refresh_expires_at,
            has_id_token=record.id_token is not None,
        )
