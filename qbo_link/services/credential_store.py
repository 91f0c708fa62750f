from datetime import datetime
from typing import Dict, Optional, Protocol

from bson import ObjectId

from qbo_link.config import _now_utc
from qbo_link.db import get_collection
from qbo_link.models.quickbooks.token import TokenRecord


class CredentialStore(Protocol):
    """Where token records live. Supplied by the embedding application."""

    async def fetch(self, realm_id: str) -> Optional[TokenRecord]:
        ...

    async def save(self, realm_id: str, record: TokenRecord) -> TokenRecord:
        ...

    async def deactivate(self, realm_id: str) -> bool:
        """Stop serving the realm's record, e.g. after its tokens were revoked."""
        ...


class InMemoryCredentialStore:
    def __init__(self, records: Optional[Dict[str, TokenRecord]] = None):
        self._records: Dict[str, TokenRecord] = dict(records or {})

    async def fetch(self, realm_id: str) -> Optional[TokenRecord]:
        return self._records.get(str(realm_id))

    async def save(self, realm_id: str, record: TokenRecord) -> TokenRecord:
        self._records[str(realm_id)] = record
        return record

    async def deactivate(self, realm_id: str) -> bool:
        return self._records.pop(str(realm_id), None) is not None


class MongoCredentialStore:
    """One document per realm in the ``quickbooks_tokens`` collection."""

    def __init__(self, collection=None):
        self.collection = collection if collection is not None else get_collection("quickbooks_tokens")

    async def fetch(self, realm_id: str) -> Optional[TokenRecord]:
        token_doc = await self.collection.find_one({"realm_id": str(realm_id), "is_active": True})
        if token_doc:
            return TokenRecord(**token_doc)
        return None

    async def save(self, realm_id: str, record: TokenRecord) -> TokenRecord:
        """Create or replace the token document for this realm."""
        now: datetime = _now_utc()
        await self.collection.update_one(
            {"realm_id": str(realm_id)},
            {
                "$set": {**record.model_dump(), "realm_id": str(realm_id), "is_active": True, "updated_at": now},
                "$setOnInsert": {"_id": str(ObjectId()), "created_at": now},
            },
            upsert=True,
        )
        return record

    async def deactivate(self, realm_id: str) -> bool:
        result = await self.collection.update_one(
            {"realm_id": str(realm_id)},
            {"$set": {"is_active": False, "updated_at": _now_utc()}},
        )
        return result.modified_count > 0
