"""Typed CRUD/query access to QuickBooks entities.

Payloads are checked against the registry before anything is sent. Reads and
queries are retried on network failures with exponential backoff; writes are
never replayed automatically, except once after a 401, which the service
returns before applying anything.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

import httpx

from qbo_link.config import Settings
from qbo_link.errors import (
    ConcurrencyConflictError,
    QuickBooksUnauthorizedError,
    RemoteServiceError,
    TransportError,
    ValidationError,
)
from qbo_link.models.quickbooks.entity import EntityRecord, EntityState, QueryResult
from qbo_link.models.quickbooks.registry import EntitySchema, Operation, get_schema
from qbo_link.models.quickbooks.token import TokenRecord
from qbo_link.services.entity_validation import (
    map_line_item,
    to_entity_record,
    validate_create_payload,
    validate_update_payload,
)
from qbo_link.services.query_builder import OrderBy, Page, QueryBuildError, Where, build_query, resolve_page
from qbo_link.services.quickbooks_service import QuickBooksTransport, company_url, raise_for_qbo_status
from qbo_link.services.token_manager import TokenLifecycleManager

# per-request limit enforced by the v3 batch endpoint
MAX_BATCH_ITEMS = 30

logger = logging.getLogger(__name__)

Payload = Union[EntityRecord, Mapping[str, Any]]


def _find_key(payload: Mapping[str, Any], name: str) -> Optional[str]:
    lowered = name.lower()
    return next((key for key in payload if key.lower() == lowered), None)


def _is_statement(where: Where) -> bool:
    return isinstance(where, str) and where.strip().lower().startswith("select ")


class EntityRequestEngine:
    def __init__(
        self,
        settings: Settings,
        token_manager: TokenLifecycleManager,
        transport: Optional[QuickBooksTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.token_manager = token_manager
        self.transport = transport or token_manager.transport
        self._sleep = sleep

    # -----------------------
    # HTTP plumbing
    # -----------------------
    async def _call(
        self,
        token: TokenRecord,
        realm_id: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]],
        json_payload: Any,
        accept: str,
        content_type: Optional[str],
        files: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        query = dict(params or {})
        if self.settings.quickbooks_minor_version:
            query["minorversion"] = self.settings.quickbooks_minor_version
        headers = {"Authorization": f"Bearer {token.access_token}", "Accept": accept}
        if content_type:
            headers["Content-Type"] = content_type
        elif json_payload is not None:
            headers["Content-Type"] = "application/json"

        url = company_url(self.settings, realm_id, path)
        if self.settings.debug:
            logger.debug("invoking QuickBooks endpoint %s %s params=%s", method, url, query)
        return await self.transport.request(
            method, url, headers=headers, params=query, json_payload=json_payload, files=files
        )

    async def _send_authorized(self, realm_id: str, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self.token_manager.get_valid_token(realm_id)
        response = await self._call(token, realm_id, method, path, **kwargs)
        try:
            raise_for_qbo_status(response)
        except QuickBooksUnauthorizedError:
            if response.status_code != 401:
                raise
            token = await self._replacement_token(realm_id, token)
            response = await self._call(token, realm_id, method, path, **kwargs)
            raise_for_qbo_status(response)
        return response

    async def _replacement_token(self, realm_id: str, rejected: TokenRecord) -> TokenRecord:
        # another request may already have rotated the pair after the same 401
        current = await self.token_manager.get_valid_token(realm_id)
        if current.access_token != rejected.access_token:
            return current
        logger.warning("QuickBooks rejected the access token for realm %s; refreshing once", realm_id)
        return await self.token_manager.refresh(realm_id)

    async def _send(
        self,
        realm_id: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Any = None,
        accept: str = "application/json",
        content_type: Optional[str] = None,
        files: Optional[Dict[str, Any]] = None,
        idempotent: bool = False,
    ) -> httpx.Response:
        attempts = 1 + (max(self.settings.quickbooks_max_retries, 0) if idempotent else 0)
        delay = self.settings.quickbooks_retry_backoff_seconds
        attempt = 1
        while True:
            try:
                return await self._send_authorized(
                    str(realm_id),
                    method,
                    path,
                    params=params,
                    json_payload=json_payload,
                    accept=accept,
                    content_type=content_type,
                    files=files,
                )
            except TransportError:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "QuickBooks %s %s failed to connect (attempt %s/%s); retrying in %.2fs",
                    method, path, attempt, attempts, delay,
                )
                await self._sleep(delay)
                delay *= 2
                attempt += 1

    def _record_from(self, schema: EntitySchema, payload: Any) -> EntityRecord:
        if isinstance(payload, Mapping):
            key = _find_key(payload, schema.name)
            if key is not None:
                payload = payload[key]
        return to_entity_record(schema.name, payload, EntityState.PERSISTED)

    @staticmethod
    def _as_dict(payload: Payload) -> Dict[str, Any]:
        if isinstance(payload, EntityRecord):
            return payload.to_payload()
        return dict(payload)

    # -----------------------
    # CRUD
    # -----------------------
    async def create(self, realm_id: str, entity_type: str, payload: Payload) -> EntityRecord:
        schema = get_schema(entity_type)
        schema.require(Operation.CREATE)
        body = validate_create_payload(schema, self._as_dict(payload))

        response = await self._send(
            realm_id, "POST", schema.path, params={"requestid": uuid4().hex}, json_payload=body
        )
        record = self._record_from(schema, response.json())
        logger.info("Created QuickBooks %s %s in realm %s", schema.name, record.id, realm_id)
        return record

    async def read(self, realm_id: str, entity_type: str, entity_id: Optional[str] = None) -> EntityRecord:
        schema = get_schema(entity_type)
        schema.require(Operation.READ)
        if entity_id is None and schema.singleton and schema.name == "CompanyInfo":
            entity_id = realm_id
        if entity_id is None and not schema.singleton:
            raise ValidationError(schema.name, ["Id is required to read"])

        path = f"{schema.path}/{entity_id}" if entity_id is not None else schema.path
        response = await self._send(realm_id, "GET", path, idempotent=True)
        return self._record_from(schema, response.json())

    async def update(
        self, realm_id: str, entity_type: str, payload: Payload, sparse: Optional[bool] = None
    ) -> EntityRecord:
        """Full update by default; ``sparse=True`` changes only the fields present."""
        schema = get_schema(entity_type)
        schema.require(Operation.UPDATE)
        source = payload if isinstance(payload, EntityRecord) else None
        if source is not None and source.state is EntityState.STALE:
            raise ValidationError(
                schema.name, ["record is stale after a SyncToken conflict; read it again before updating"]
            )

        data = self._as_dict(payload)
        if sparse is None:
            sparse = bool(data.get("sparse", False))
        body = validate_update_payload(schema, data, sparse)

        try:
            response = await self._send(
                realm_id,
                "POST",
                schema.path,
                params={"operation": "update", "requestid": uuid4().hex},
                json_payload=body,
            )
        except ConcurrencyConflictError:
            if source is not None:
                source.state = EntityState.STALE
            logger.warning(
                "QuickBooks %s %s update conflicted on SyncToken %s", schema.name, data.get("Id"), data.get("SyncToken")
            )
            raise
        return self._record_from(schema, response.json())

    async def delete(self, realm_id: str, entity_type: str, entity_id: str, sync_token: str) -> EntityRecord:
        schema = get_schema(entity_type)
        schema.require(Operation.DELETE)
        if entity_id in (None, "") or sync_token in (None, ""):
            raise ValidationError(schema.name, ["Id and SyncToken are required to delete"])

        response = await self._send(
            realm_id,
            "POST",
            schema.path,
            params={"operation": "delete", "requestid": uuid4().hex},
            json_payload={"Id": str(entity_id), "SyncToken": str(sync_token)},
        )
        logger.info("Deleted QuickBooks %s %s in realm %s", schema.name, entity_id, realm_id)
        return self._record_from(schema, response.json())

    async def void(self, realm_id: str, entity_type: str, entity_id: str, sync_token: str) -> EntityRecord:
        schema = get_schema(entity_type)
        schema.require(Operation.VOID)
        if entity_id in (None, "") or sync_token in (None, ""):
            raise ValidationError(schema.name, ["Id and SyncToken are required to void"])

        body: Dict[str, Any] = {"Id": str(entity_id), "SyncToken": str(sync_token)}
        if schema.void_via_update:
            params = {"operation": "update", "include": "void"}
            body["sparse"] = True
        else:
            params = {"operation": "void"}
        params["requestid"] = uuid4().hex

        response = await self._send(realm_id, "POST", schema.path, params=params, json_payload=body)
        return self._record_from(schema, response.json())

    # -----------------------
    # Query
    # -----------------------
    def _statement(self, schema: EntitySchema, where: Where, **kwargs) -> str:
        try:
            return build_query(schema.name, where, **kwargs)
        except QueryBuildError as exc:
            raise ValidationError(schema.name, [str(exc)]) from exc

    async def query(
        self,
        realm_id: str,
        entity_type: str,
        where: Where = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: OrderBy = None,
        fetch_all: bool = False,
    ) -> QueryResult:
        schema = get_schema(entity_type)
        schema.require(Operation.QUERY)
        page = resolve_page(limit, offset, fetch_all)
        start_position = page.offset + 1
        records: List[EntityRecord] = []
        total_count = None

        while True:
            statement = self._statement(schema, where, page=page, order_by=order_by)
            response = await self._send(realm_id, "GET", "query", params={"query": statement}, idempotent=True)
            query_response = response.json().get("QueryResponse") or {}
            key = _find_key(query_response, schema.name)
            rows = (query_response.get(key) or []) if key else []
            records.extend(to_entity_record(schema.name, row) for row in rows)
            total_count = query_response.get("totalCount", total_count)

            if not fetch_all or _is_statement(where) or len(rows) < page.limit:
                break
            page = Page(limit=page.limit, offset=page.offset + page.limit)

        return QueryResult(
            entity_type=schema.name,
            records=records,
            start_position=start_position,
            max_results=len(records),
            total_count=total_count,
        )

    async def count(self, realm_id: str, entity_type: str, where: Where = None) -> int:
        schema = get_schema(entity_type)
        schema.require(Operation.QUERY)
        statement = self._statement(schema, where, count=True)
        response = await self._send(realm_id, "GET", "query", params={"query": statement}, idempotent=True)
        return int((response.json().get("QueryResponse") or {}).get("totalCount", 0))

    # -----------------------
    # Document actions
    # -----------------------
    async def send(
        self, realm_id: str, entity_type: str, entity_id: str, send_to: Optional[str] = None
    ) -> EntityRecord:
        """Email the document; without ``send_to`` the service uses the entity's BillEmail."""
        schema = get_schema(entity_type)
        schema.require(Operation.SEND)
        params = {"sendTo": send_to} if send_to else None
        response = await self._send(
            realm_id,
            "POST",
            f"{schema.path}/{entity_id}/send",
            params=params,
            content_type="application/octet-stream",
        )
        return self._record_from(schema, response.json())

    async def get_pdf(self, realm_id: str, entity_type: str, entity_id: str) -> bytes:
        schema = get_schema(entity_type)
        schema.require(Operation.PDF)
        response = await self._send(
            realm_id, "GET", f"{schema.path}/{entity_id}/pdf", accept="application/pdf", idempotent=True
        )
        return response.content

    async def upload(
        self,
        realm_id: str,
        filename: str,
        content_type: str,
        content: bytes,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> EntityRecord:
        """Upload a file as an Attachable, linked to ``entity_type``/``entity_id`` when given."""
        schema = get_schema("Attachable")
        schema.require(Operation.CREATE)
        if entity_type is not None:
            entity_type = get_schema(entity_type).name
            if entity_id in (None, ""):
                raise ValidationError(schema.name, ["entity_id is required to link an upload"])

        response = await self._send(
            realm_id,
            "POST",
            "upload",
            params={"requestid": uuid4().hex},
            files={"file_content_01": (filename, content, content_type)},
        )
        payload = response.json()
        first = (payload.get("AttachableResponse") or [{}])[0]
        if first.get("Fault") or not first.get("Attachable"):
            raise RemoteServiceError(
                response.status_code, first or payload, message="QuickBooks rejected the attachment upload"
            )
        record = to_entity_record(schema.name, first["Attachable"])
        logger.info("Uploaded %s as Attachable %s in realm %s", filename, record.id, realm_id)
        if entity_type is None:
            return record

        return await self.update(
            realm_id,
            schema.name,
            {
                "Id": record.id,
                "SyncToken": record.sync_token,
                "AttachableRef": [{"EntityRef": {"type": entity_type, "value": str(entity_id)}}],
            },
            sparse=True,
        )

    # -----------------------
    # Reports, change data capture, batch
    # -----------------------
    async def report(self, realm_id: str, report_name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Fetch a QuickBooks report (e.g., ProfitAndLoss, BalanceSheet).
        """
        response = await self._send(realm_id, "GET", f"reports/{report_name}", params=params, idempotent=True)
        return response.json()

    async def change_data_capture(
        self, realm_id: str, entities: Iterable[str], changed_since: Union[datetime, str]
    ) -> Dict[str, List[EntityRecord]]:
        names = [get_schema(entity).name for entity in entities]
        if not names:
            raise ValidationError("ChangeDataCapture", ["at least one entity type is required"])
        since = changed_since.isoformat() if isinstance(changed_since, datetime) else str(changed_since)

        response = await self._send(
            realm_id,
            "GET",
            "cdc",
            params={"entities": ",".join(names), "changedSince": since},
            idempotent=True,
        )
        changes: Dict[str, List[EntityRecord]] = {name: [] for name in names}
        for cdc in response.json().get("CDCResponse") or []:
            for query_response in cdc.get("QueryResponse") or []:
                for name in names:
                    key = _find_key(query_response, name)
                    for row in (query_response.get(key) or []) if key else []:
                        changes[name].append(to_entity_record(name, row))
        return changes

    async def batch(self, realm_id: str, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run up to 30 create/update/delete/query items in one request. Item payloads go through as given."""
        if not items:
            raise ValidationError("Batch", ["at least one batch item is required"])
        if len(items) > MAX_BATCH_ITEMS:
            raise ValidationError("Batch", [f"at most {MAX_BATCH_ITEMS} items per batch"])
        response = await self._send(
            realm_id, "POST", "batch", params={"requestid": uuid4().hex}, json_payload={"BatchItemRequest": items}
        )
        return response.json().get("BatchItemResponse", [])

    # -----------------------
    # Lines
    # -----------------------
    @staticmethod
    def map_line_item(entity_type: str, raw_line: Mapping[str, Any]):
        return map_line_item(entity_type, raw_line)
