from typing import Optional
from pydantic import BaseModel


class ReferenceType(BaseModel):
    """Pointer to another entity ({"value": "42", "name": "Acme"}). Never resolved client-side."""
    value: str
    name: Optional[str] = None
    type: Optional[str] = None

    class Config:
        extra = "allow"


class MetaData(BaseModel):
    CreateTime: Optional[str] = None
    LastUpdatedTime: Optional[str] = None

    class Config:
        extra = "allow"
