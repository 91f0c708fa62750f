from typing import Any, Dict, Iterable, List, Mapping, Optional

import pydantic

from qbo_link.errors import UnknownLineVariantError, ValidationError
from qbo_link.models.quickbooks.entity import EntityRecord, EntityState
from qbo_link.models.quickbooks.lines import LINE_ADAPTER, serialize_line
from qbo_link.models.quickbooks.registry import SERVER_ASSIGNED, EntitySchema, get_schema


def _lookup(payload: Mapping[str, Any], path: str) -> Any:
    value: Any = payload
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _is_present(payload: Mapping[str, Any], field: str) -> bool:
    value = _lookup(payload, field)
    if value is None:
        return False
    if isinstance(value, (str, list, dict)) and not value:
        return False
    return True


def _missing(fields: Iterable[str], payload: Mapping[str, Any]) -> List[str]:
    return [f"{field} is required" for field in fields if not _is_present(payload, field)]


def _too_long(schema: EntitySchema, payload: Mapping[str, Any]) -> List[str]:
    problems = []
    for field, limit in schema.max_lengths.items():
        value = _lookup(payload, field)
        if isinstance(value, str) and len(value) > limit:
            problems.append(f"{field} exceeds {limit} characters")
    return problems


def _is_linked_txn_line(raw_line: Mapping[str, Any]) -> bool:
    # payment application lines (e.g. a Deposit of received payments) carry no DetailType
    return "DetailType" not in raw_line and bool(raw_line.get("LinkedTxn"))


def map_line_item(entity_type: str, raw_line: Mapping[str, Any]):
    """Resolve the line variant selected by ``DetailType`` for this entity type.

    Raises ``UnknownLineVariantError`` for a tag the entity type does not
    accept. A line is never reinterpreted as a different variant.
    """
    schema = get_schema(entity_type)
    if not isinstance(raw_line, Mapping):
        raise ValidationError(schema.name, [f"Line entries must be objects, got {type(raw_line).__name__}"])
    if not schema.has_typed_lines or _is_linked_txn_line(raw_line):
        return dict(raw_line)

    detail_type = raw_line.get("DetailType")
    if not schema.allows_line(detail_type):
        raise UnknownLineVariantError(schema.name, detail_type)
    try:
        return LINE_ADAPTER.validate_python(dict(raw_line))
    except pydantic.ValidationError as exc:
        problems = [
            f"Line {detail_type}: {'.'.join(str(part) for part in error['loc'][1:]) or 'line'} {error['msg']}"
            for error in exc.errors()
        ]
        raise ValidationError(schema.name, problems) from exc


def map_lines(schema: EntitySchema, raw_lines: Any) -> List[Any]:
    if not isinstance(raw_lines, list):
        raise ValidationError(schema.name, ["Line must be a list"])
    return [map_line_item(schema.name, raw_line) for raw_line in raw_lines]


def _body_with_lines(schema: EntitySchema, body: Dict[str, Any]) -> Dict[str, Any]:
    if "Line" in body and body["Line"] is not None:
        body["Line"] = [serialize_line(line) for line in map_lines(schema, body["Line"])]
    return body


def validate_create_payload(schema: EntitySchema, payload: Mapping[str, Any]) -> Dict[str, Any]:
    problems = [f"{field} is read-only" for field in schema.all_read_only if field in payload]
    problems += _missing(schema.required, payload)
    problems += _too_long(schema, payload)
    if problems:
        raise ValidationError(schema.name, problems)
    return _body_with_lines(schema, dict(payload))


def validate_update_payload(schema: EntitySchema, payload: Mapping[str, Any], sparse: bool) -> Dict[str, Any]:
    problems = _missing(schema.identity_fields, payload)
    if not sparse:
        problems += _missing(schema.required, payload)
    problems += _too_long(schema, payload)
    if problems:
        raise ValidationError(schema.name, problems)

    # computed fields echoed back from a read are dropped rather than rejected
    dropped = set(schema.read_only) | (set(SERVER_ASSIGNED) - {"Id", "SyncToken"})
    body = {field: value for field, value in payload.items() if field not in dropped}
    body["sparse"] = sparse
    return _body_with_lines(schema, body)


def to_entity_record(
    entity_type: str, raw: Optional[Mapping[str, Any]], state: EntityState = EntityState.PERSISTED
) -> EntityRecord:
    schema = get_schema(entity_type)
    data = dict(raw or {})
    raw_lines = data.pop("Line", None)
    lines = map_lines(schema, raw_lines) if raw_lines is not None else None
    return EntityRecord(entity_type=schema.name, data=data, lines=lines, state=state)
