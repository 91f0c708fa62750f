from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from qbo_link.models.quickbooks.common import MetaData
from qbo_link.models.quickbooks.lines import serialize_line


class EntityState(str, Enum):
    DRAFT = "draft"
    PERSISTED = "persisted"
    STALE = "stale"


class EntityRecord(BaseModel):
    """One entity instance.

    ``data`` holds every wire field except ``Line``; ``lines`` holds the typed
    line variants (or plain dicts for entity types whose lines carry no
    ``DetailType``).
    """
    entity_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    lines: Optional[List[Any]] = None
    state: EntityState = EntityState.DRAFT

    @property
    def id(self) -> Optional[str]:
        value = self.data.get("Id")
        return None if value is None else str(value)

    @property
    def sync_token(self) -> Optional[str]:
        value = self.data.get("SyncToken")
        return None if value is None else str(value)

    @property
    def meta(self) -> Optional[MetaData]:
        raw = self.data.get("MetaData")
        return MetaData(**raw) if isinstance(raw, dict) else None

    def get(self, field: str, default: Any = None) -> Any:
        return self.data.get(field, default)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.data)
        if self.lines is not None:
            payload["Line"] = [serialize_line(line) for line in self.lines]
        return payload


class QueryResult(BaseModel):
    entity_type: str
    records: List[EntityRecord] = Field(default_factory=list)
    start_position: Optional[int] = None
    max_results: int = 0
    total_count: Optional[int] = None
