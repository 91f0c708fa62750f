from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from qbo_link.errors import MissingCredentialsError
from qbo_link.models.quickbooks.entity import EntityRecord, QueryResult
from qbo_link.models.quickbooks.token import TokenRecord
from qbo_link.services.entity_service import EntityRequestEngine, Payload
from qbo_link.services.query_builder import OrderBy, Where
from qbo_link.services.token_manager import TokenLifecycleManager


class RealmClient:
    """
    Engine and token manager bound to one company (realm).

    Nothing is cached here: tokens always come from the manager's store, so
    several clients for the same realm share refresh coordination.
    """

    def __init__(self, realm_id: str, token_manager: TokenLifecycleManager, engine: EntityRequestEngine):
        self.realm_id = str(realm_id)
        self.token_manager = token_manager
        self.engine = engine

    async def create_token(self, code: str, redirect_uri: Optional[str] = None) -> TokenRecord:
        return await self.token_manager.exchange_authorization_code(code, self.realm_id, redirect_uri)

    async def get_valid_token(self) -> TokenRecord:
        return await self.token_manager.get_valid_token(self.realm_id)

    async def refresh(self) -> TokenRecord:
        return await self.token_manager.refresh(self.realm_id)

    async def is_connected(self) -> bool:
        try:
            await self.token_manager.get_valid_token(self.realm_id)
        except MissingCredentialsError:
            return False
        return True

    async def create(self, entity_type: str, payload: Payload) -> EntityRecord:
        return await self.engine.create(self.realm_id, entity_type, payload)

    async def read(self, entity_type: str, entity_id: Optional[str] = None) -> EntityRecord:
        return await self.engine.read(self.realm_id, entity_type, entity_id)

    async def update(self, entity_type: str, payload: Payload, sparse: Optional[bool] = None) -> EntityRecord:
        return await self.engine.update(self.realm_id, entity_type, payload, sparse=sparse)

    async def delete(self, entity_type: str, entity_id: str, sync_token: str) -> EntityRecord:
        return await self.engine.delete(self.realm_id, entity_type, entity_id, sync_token)

    async def void(self, entity_type: str, entity_id: str, sync_token: str) -> EntityRecord:
        return await self.engine.void(self.realm_id, entity_type, entity_id, sync_token)

    async def query(
        self,
        entity_type: str,
        where: Where = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: OrderBy = None,
        fetch_all: bool = False,
    ) -> QueryResult:
        return await self.engine.query(
            self.realm_id, entity_type, where, limit=limit, offset=offset, order_by=order_by, fetch_all=fetch_all
        )

    async def count(self, entity_type: str, where: Where = None) -> int:
        return await self.engine.count(self.realm_id, entity_type, where)

    async def send(self, entity_type: str, entity_id: str, send_to: Optional[str] = None) -> EntityRecord:
        return await self.engine.send(self.realm_id, entity_type, entity_id, send_to)

    async def get_pdf(self, entity_type: str, entity_id: str) -> bytes:
        return await self.engine.get_pdf(self.realm_id, entity_type, entity_id)

    async def report(self, report_name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.engine.report(self.realm_id, report_name, params)

    async def change_data_capture(
        self, entities: Iterable[str], changed_since: Union[datetime, str]
    ) -> Dict[str, List[EntityRecord]]:
        return await self.engine.change_data_capture(self.realm_id, entities, changed_since)

    async def batch(self, items: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return await self.engine.batch(self.realm_id, [dict(item) for item in items])

    async def upload(
        self,
        filename: str,
        content_type: str,
        content: bytes,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> EntityRecord:
        return await self.engine.upload(self.realm_id, filename, content_type, content, entity_type, entity_id)

    async def get_user_info(self) -> Dict[str, Any]:
        return await self.token_manager.get_user_info(self.realm_id)
