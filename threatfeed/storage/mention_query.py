"""Paged, filtered, sorted reads over `darkweb_mentions`.

Filters are typed values compiled to parameterized predicates; user input only
ever travels as a bind parameter. ORDER BY columns come from a fixed allow-list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from psycopg import sql

from threatfeed.ingestion.normalizer import parse_timestamp


DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 500

SEARCH_COLUMNS = ("message", "category", "network")

SORT_COLUMNS: Dict[str, str] = {
    "timestamp": "timestamp",
    "date": "timestamp",
    "message": "message",
    "category": "category",
    "network": "network",
    "created_at": "created_at",
    "uuid": "uuid",
}
DEFAULT_SORT_FIELD = "timestamp"
SORT_ORDERS = ("ASC", "DESC")

SELECT_COLUMNS = ("uuid", "message", "category", "network", "timestamp", "metadata", "created_at")


class FilterKind(str, Enum):
    SEARCH = "search"
    CATEGORY = "category"
    NETWORK = "network"
    DATE_FROM = "date_from"
    DATE_TO = "date_to"


@dataclass(frozen=True)
class MentionFilter:
    kind: FilterKind
    value: Any


def _scalar(value: Any) -> Any:
    # parse_qs-style mappings hold a list per key; the first value wins.
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _int_param(value: Any, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _choice(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.lower() == "all":
        return None
    return s


def _date_param(name: str, value: Any, *, end_of_day: bool = False) -> Optional[datetime]:
    if value is None or not str(value).strip():
        return None
    s = str(value).strip()
    parsed = parse_timestamp(s)
    if parsed is None:
        raise ValueError(f"Invalid {name}: {s!r}")
    if end_of_day and len(s) == 10:
        # "YYYY-MM-DD" as an upper bound covers the whole day.
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


@dataclass(frozen=True)
class MentionQuery:
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    search: Optional[str] = None
    category: Optional[str] = None
    network: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sort_field: str = DEFAULT_SORT_FIELD
    sort_order: str = "DESC"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def sort_column(self) -> str:
        return SORT_COLUMNS.get(self.sort_field, SORT_COLUMNS[DEFAULT_SORT_FIELD])

    @property
    def sort_direction(self) -> str:
        order = (self.sort_order or "").upper()
        return order if order in SORT_ORDERS else "DESC"

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "MentionQuery":
        """Normalize raw request parameters (strings) into a query.

        Unknown sort fields fall back to `timestamp`, unknown orders to DESC,
        bad page/limit values to their defaults. Unparseable dates raise ValueError.
        Values may be plain strings or lists of strings (as from `parse_qs`).
        """

        def get(name: str) -> Any:
            return _scalar(params.get(name))

        sort_field = str(get("sortField") or get("sort_field") or DEFAULT_SORT_FIELD).strip()
        if sort_field not in SORT_COLUMNS:
            sort_field = DEFAULT_SORT_FIELD
        sort_order = str(get("sortOrder") or get("sort_order") or "DESC").strip().upper()
        if sort_order not in SORT_ORDERS:
            sort_order = "DESC"
        search = str(get("search") or "").strip() or None
        return cls(
            page=_int_param(get("page"), 1),
            limit=min(_int_param(get("limit"), DEFAULT_PAGE_LIMIT), MAX_PAGE_LIMIT),
            search=search,
            category=_choice(get("category")),
            network=_choice(get("network")),
            start_date=_date_param("start_date", get("start_date")),
            end_date=_date_param("end_date", get("end_date"), end_of_day=True),
            sort_field=sort_field,
            sort_order=sort_order,
        )


def build_filters(query: MentionQuery) -> List[MentionFilter]:
    filters: List[MentionFilter] = []
    if query.search:
        filters.append(MentionFilter(FilterKind.SEARCH, query.search))
    if query.category:
        filters.append(MentionFilter(FilterKind.CATEGORY, query.category))
    if query.network:
        filters.append(MentionFilter(FilterKind.NETWORK, query.network))
    if query.start_date:
        filters.append(MentionFilter(FilterKind.DATE_FROM, query.start_date))
    if query.end_date:
        filters.append(MentionFilter(FilterKind.DATE_TO, query.end_date))
    return filters


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _predicate(f: MentionFilter) -> Tuple[sql.Composable, List[Any]]:
    if f.kind is FilterKind.SEARCH:
        pattern = f"%{_escape_like(str(f.value))}%"
        parts = [sql.SQL("{} ILIKE %s").format(sql.Identifier(c)) for c in SEARCH_COLUMNS]
        parts.append(sql.SQL("metadata::text ILIKE %s"))
        return sql.SQL("(") + sql.SQL(" OR ").join(parts) + sql.SQL(")"), [pattern] * len(parts)
    if f.kind is FilterKind.CATEGORY:
        return sql.SQL("{} = %s").format(sql.Identifier("category")), [f.value]
    if f.kind is FilterKind.NETWORK:
        return sql.SQL("{} = %s").format(sql.Identifier("network")), [f.value]
    if f.kind is FilterKind.DATE_FROM:
        return sql.SQL("{} >= %s").format(sql.Identifier("timestamp")), [f.value]
    if f.kind is FilterKind.DATE_TO:
        return sql.SQL("{} <= %s").format(sql.Identifier("timestamp")), [f.value]
    raise ValueError(f"Unsupported filter kind: {f.kind!r}")


def compile_filters(filters: List[MentionFilter]) -> Tuple[sql.Composable, List[Any]]:
    """Return (WHERE clause, bind params); an empty filter list gives an empty clause."""
    if not filters:
        return sql.SQL(""), []
    predicates = []
    params: List[Any] = []
    for f in filters:
        pred, p = _predicate(f)
        predicates.append(pred)
        params.extend(p)
    return sql.SQL("WHERE ") + sql.SQL(" AND ").join(predicates), params


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return value


class PostgresMentionStore:
    def __init__(self, store):
        self.store = store

    def fetch_page(self, query: MentionQuery) -> Dict[str, Any]:
        where, params = compile_filters(build_filters(query))
        order = sql.SQL("ORDER BY {} {}, {} {}").format(
            sql.Identifier(query.sort_column),
            sql.SQL(query.sort_direction),
            sql.Identifier("id"),
            sql.SQL(query.sort_direction),
        )
        count_sql = sql.SQL("SELECT COUNT(*) FROM darkweb_mentions {}").format(where)
        data_sql = sql.SQL("SELECT {} FROM darkweb_mentions {} {} LIMIT %s OFFSET %s").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in SELECT_COLUMNS),
            where,
            order,
        )
        stats_sql = sql.SQL("SELECT category, COUNT(*) FROM darkweb_mentions {} GROUP BY category").format(where)

        with self.store.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(count_sql, params)
                total = int(cur.fetchone()[0] or 0)
                cur.execute(data_sql, params + [query.limit, query.offset])
                rows = cur.fetchall()
                cur.execute(stats_sql, params)
                by_category = {category: int(count or 0) for category, count in cur.fetchall()}

        return {
            "success": True,
            "data": [self._row_to_mention(row) for row in rows],
            "total": total,
            "page": query.page,
            "limit": query.limit,
            "stats": {"total": total, "by_category": by_category},
        }

    def _row_to_mention(self, row) -> Dict[str, Any]:
        # Row ordering matches SELECT_COLUMNS.
        (uuid, message, category, network, timestamp, metadata, created_at) = row
        return {
            "uuid": uuid,
            "message": message,
            "category": category,
            "network": network,
            "timestamp": _iso(timestamp),
            "metadata": metadata,
            "created_at": _iso(created_at),
        }
