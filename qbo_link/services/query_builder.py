"""Build statements for the QuickBooks query endpoint.

The query language belongs to the service. Where clauses given as strings are
passed through untouched; only criteria given as data are rendered here.
"""
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000
OPERATORS = ("=", "IN", "<", ">", "<=", ">=", "LIKE")

Criterion = Tuple[str, str, Any]
Where = Union[str, Mapping[str, Any], Sequence[Criterion], None]
OrderBy = Union[str, Sequence[Union[str, Tuple[str, str]]], None]


class QueryBuildError(ValueError):
    pass


@dataclass
class Page:
    limit: int
    offset: int = 0


def resolve_page(limit: Optional[int], offset: Optional[int], fetch_all: bool = False) -> Page:
    if limit is None or limit < 1 or limit > MAX_PAGE_SIZE:
        limit = MAX_PAGE_SIZE if fetch_all else DEFAULT_PAGE_SIZE
    if offset is None or offset < 0:
        offset = 0
    return Page(limit=int(limit), offset=int(offset))


def quote_value(value: Any) -> str:
    if value is None:
        return "''"
    if isinstance(value, bool):
        return "true" if value else "false"
    return "'" + str(value).replace("'", "\\'") + "'"


def _criteria(where: Union[Mapping[str, Any], Sequence[Criterion]]) -> List[Criterion]:
    if isinstance(where, Mapping):
        return [
            (field, "IN" if isinstance(value, (list, tuple, set)) else "=", value)
            for field, value in where.items()
        ]
    criteria = []
    for item in where:
        if not isinstance(item, (list, tuple)) or len(item) != 3:
            raise QueryBuildError(f"Invalid criterion {item!r}; expected (field, operator, value)")
        criteria.append((item[0], item[1], item[2]))
    return criteria


def render_where(where: Where) -> str:
    if where is None:
        return ""
    if isinstance(where, str):
        clause = where.strip()
        if not clause:
            return ""
        return clause if clause.lower().startswith("where ") else f"where {clause}"

    parts = []
    for field, operator, value in _criteria(where):
        operator = (operator or "=").upper()
        if operator not in OPERATORS:
            raise QueryBuildError(f"Unsupported operator {operator!r}")
        if operator == "IN":
            if not isinstance(value, (list, tuple, set)):
                raise QueryBuildError("IN requires a list of values")
            rendered = "(" + ", ".join(quote_value(v) for v in value) + ")"
        elif isinstance(value, (list, tuple, set)):
            raise QueryBuildError(f"Operator {operator} cannot take a list")
        else:
            rendered = quote_value(value)
        parts.append(f"{field} {operator} {rendered}")
    return ("where " + " and ".join(parts)) if parts else ""


def render_order_by(order_by: OrderBy) -> str:
    if not order_by:
        return ""
    items: Iterable = [order_by] if isinstance(order_by, str) else order_by
    rendered = []
    for item in items:
        if isinstance(item, str):
            rendered.append(item)
            continue
        field, direction = item
        direction = direction.upper()
        if direction not in {"ASC", "DESC"}:
            raise QueryBuildError(f"Invalid sort direction {direction!r}")
        rendered.append(f"{field} {direction}")
    return "orderby " + ", ".join(rendered)


def build_query(
    entity_name: str,
    where: Where = None,
    *,
    page: Optional[Page] = None,
    order_by: OrderBy = None,
    count: bool = False,
) -> str:
    """
    Return the query statement for an entity, e.g.
    ``select * from Invoice where DocNumber = '1001' startposition 1 maxresults 100``.

    A ``where`` string that is already a full ``select`` statement is returned as-is.
    """
    if isinstance(where, str) and where.strip().lower().startswith("select "):
        return where.strip()

    selector = "count(*)" if count else "*"
    parts = [f"select {selector} from {entity_name}"]
    clause = render_where(where)
    if clause:
        parts.append(clause)
    ordering = render_order_by(order_by)
    if ordering and not count:
        parts.append(ordering)
    if page is not None and not count:
        parts.append(f"startposition {page.offset + 1}")
        parts.append(f"maxresults {page.limit}")
    return " ".join(parts)
