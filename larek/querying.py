"""Safe, bounded list queries over the document store.

Untrusted query-string parameters are turned into a ``QuerySpec``: an
immutable plan holding the page window, an allow-listed sort and an ordered
tuple of filter clauses. Clauses are built from typed values only; user text
never reaches the store as an operator key or as an unescaped pattern.
"""

import enum
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from larek.config import QuerySettings
from larek.errors import ValidationError
from larek.validation import MAX_STORE_INT

DEFAULT_SORT_FIELD = "createdAt"
RESERVED_KEY_TOKENS = ("__proto__", "constructor", "prototype")
ISO_DAY_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
INTEGER_PATTERN = re.compile(r"[+-]?\d+")


class SortOrder(str, enum.Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"

    @property
    def direction(self) -> int:
        return 1 if self is SortOrder.ASCENDING else -1

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortOrder":
        normalized = str(value or "").strip().lower()
        if normalized in {"asc", "ascending", "1"}:
            return cls.ASCENDING
        return cls.DESCENDING


@dataclass(frozen=True)
class AuthContext:
    subject_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# --- Filter clauses ---


@dataclass(frozen=True)
class ExactMatch:
    field: str
    value: Any

    def to_filter(self) -> Dict[str, Any]:
        return {self.field: self.value}


@dataclass(frozen=True)
class TextSearch:
    fields: Tuple[str, ...]
    pattern: "re.Pattern"
    numeric_field: Optional[str] = None
    numeric_value: Optional[int] = None

    def to_filter(self) -> Dict[str, Any]:
        alternatives: List[Dict[str, Any]] = [
            {field_name: self.pattern} for field_name in self.fields
        ]
        if self.numeric_field and self.numeric_value is not None:
            alternatives.append({self.numeric_field: self.numeric_value})
        return {"$or": alternatives}


@dataclass(frozen=True)
class NumberRange:
    field: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def to_filter(self) -> Dict[str, Any]:
        bounds: Dict[str, float] = {}
        if self.minimum is not None:
            bounds["$gte"] = self.minimum
        if self.maximum is not None:
            bounds["$lte"] = self.maximum
        return {self.field: bounds}


@dataclass(frozen=True)
class DateRange:
    field: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def to_filter(self) -> Dict[str, Any]:
        bounds: Dict[str, datetime] = {}
        if self.start is not None:
            bounds["$gte"] = self.start
        if self.end is not None:
            bounds["$lt"] = self.end
        return {self.field: bounds}


@dataclass(frozen=True)
class OwnerScope:
    field: str
    owner_id: str

    def to_filter(self) -> Dict[str, Any]:
        return {self.field: ObjectId(self.owner_id)}


# --- Resources ---


@dataclass(frozen=True)
class Resource:
    """Declarative description of one listable collection.

    Every public parameter name is mapped to a store field here, so nothing a
    caller sends is ever used as a field name directly.
    """

    collection: str
    sort_fields: Mapping[str, str]
    search_fields: Tuple[str, ...] = ()
    numeric_search_field: Optional[str] = None
    enum_filters: Mapping[str, Tuple[str, Tuple[str, ...]]] = field(
        default_factory=dict
    )
    exact_filters: Mapping[str, str] = field(default_factory=dict)
    number_ranges: Mapping[str, str] = field(default_factory=dict)
    date_ranges: Mapping[str, str] = field(default_factory=dict)
    owner_field: Optional[str] = None


ORDER_STATUSES = ("new", "delivering", "completed", "cancelled")
PAYMENT_TYPES = ("card", "online")

ORDERS = Resource(
    collection="orders",
    sort_fields={
        "createdAt": "created_at",
        "orderNumber": "order_number",
        "totalAmount": "total_amount",
        "status": "status",
    },
    search_fields=("items.title", "email"),
    numeric_search_field="order_number",
    enum_filters={
        "status": ("status", ORDER_STATUSES),
        "payment": ("payment", PAYMENT_TYPES),
    },
    number_ranges={"totalAmount": "total_amount"},
    date_ranges={"orderDate": "created_at"},
    owner_field="customer",
)

CUSTOMERS = Resource(
    collection="users",
    sort_fields={
        "createdAt": "created_at",
        "name": "name",
        "email": "email",
    },
    search_fields=("name", "email"),
    date_ranges={"registrationDate": "created_at"},
    owner_field="_id",
)

PRODUCTS = Resource(
    collection="products",
    sort_fields={
        "createdAt": "created_at",
        "title": "title",
        "price": "price",
    },
    search_fields=("title", "description"),
    exact_filters={"category": "category"},
    number_ranges={"price": "price"},
)


# --- Query plan ---

Clause = Any


@dataclass(frozen=True)
class QuerySpec:
    page: int
    page_size: int
    sort_field: str
    sort_order: SortOrder
    filters: Tuple[Clause, ...]
    resource: Resource

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size

    @property
    def owner(self) -> Optional[str]:
        for clause in self.filters:
            if isinstance(clause, OwnerScope):
                return clause.owner_id
        return None

    @property
    def sort(self) -> List[Tuple[str, int]]:
        store_field = self.resource.sort_fields[self.sort_field]
        return [(store_field, self.sort_order.direction)]

    def to_filter(self) -> Dict[str, Any]:
        clauses = [clause.to_filter() for clause in self.filters]
        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}


@dataclass
class Page:
    items: List[Dict[str, Any]]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    def to_dict(self, serialize: Callable[[Dict[str, Any]], Dict[str, Any]]):
        return {
            "items": [serialize(document) for document in self.items],
            "pagination": {
                "totalCount": self.total_count,
                "totalPages": self.total_pages,
                "currentPage": self.page,
                "pageSize": self.page_size,
            },
        }


# --- Parsing helpers ---


def escape_pattern(value: str) -> str:
    return re.escape(value)


def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
    if not value:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    normalized = candidate.replace("Z", "+00:00")
    if ISO_DAY_PATTERN.fullmatch(candidate):
        normalized = f"{candidate}T00:00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day and ISO_DAY_PATTERN.fullmatch(candidate):
        return parsed + timedelta(days=1)
    return parsed


def _parse_int(value) -> Optional[int]:
    candidate = str(value or "").strip()
    # Longer digit strings cannot fit the store's 64-bit integers.
    if not INTEGER_PATTERN.fullmatch(candidate) or len(candidate.lstrip("+-")) > 19:
        return None
    parsed = int(candidate)
    if not -MAX_STORE_INT - 1 <= parsed <= MAX_STORE_INT:
        return None
    return parsed


def _parse_number(name: str, value) -> Optional[float]:
    candidate = str(value or "").strip()
    if not candidate:
        return None
    try:
        numeric = float(candidate)
    except ValueError:
        raise ValidationError(f"Parameter {name} must be a number.")
    if not math.isfinite(numeric):
        raise ValidationError(f"Parameter {name} must be a finite number.")
    return numeric


def is_reserved_key(key: str) -> bool:
    lowered = str(key).lower()
    return "$" in lowered or any(token in lowered for token in RESERVED_KEY_TOKENS)


class QueryBuilder:
    def __init__(self, settings: QuerySettings):
        self.settings = settings

    def build_spec(
        self,
        raw_params: Mapping[str, Any],
        auth: AuthContext,
        resource: Resource,
    ) -> QuerySpec:
        params = {str(key): raw_params[key] for key in raw_params}

        if any(is_reserved_key(key) for key in params):
            raise ValidationError("Invalid query parameters.")

        page = self._parse_page(params.get("page"))
        page_size = self._parse_page_size(
            params.get("pageSize", params.get("limit"))
        )
        # skip = (page - 1) * page_size must fit a signed 64-bit integer.
        page = min(page, MAX_STORE_INT // page_size + 1)

        sort_field = str(params.get("sortField") or "").strip()
        if sort_field not in resource.sort_fields:
            sort_field = DEFAULT_SORT_FIELD
        sort_order = SortOrder.parse(params.get("sortOrder"))

        filters: List[Clause] = []

        search_clause = self._build_search(params.get("search"), resource)
        if search_clause:
            filters.append(search_clause)

        for param, (store_field, allowed) in resource.enum_filters.items():
            value = str(params.get(param) or "").strip()
            if not value:
                continue
            if value not in allowed:
                raise ValidationError(
                    f"Parameter {param} must be one of: {', '.join(allowed)}."
                )
            filters.append(ExactMatch(store_field, value))

        for param, store_field in resource.exact_filters.items():
            value = str(params.get(param) or "").strip()
            if value:
                filters.append(ExactMatch(store_field, value))

        for param, store_field in resource.number_ranges.items():
            minimum = _parse_number(f"{param}From", params.get(f"{param}From"))
            maximum = _parse_number(f"{param}To", params.get(f"{param}To"))
            if minimum is None and maximum is None:
                continue
            if minimum is not None and maximum is not None and minimum > maximum:
                raise ValidationError(
                    f"Parameter {param}From must not exceed {param}To."
                )
            filters.append(NumberRange(store_field, minimum, maximum))

        for param, store_field in resource.date_ranges.items():
            range_clause = self._build_date_range(param, store_field, params)
            if range_clause:
                filters.append(range_clause)

        owner_clause = self._build_owner_scope(params, auth, resource)
        if owner_clause:
            filters.append(owner_clause)

        return QuerySpec(
            page=page,
            page_size=page_size,
            sort_field=sort_field,
            sort_order=sort_order,
            filters=tuple(filters),
            resource=resource,
        )

    def execute(self, spec: QuerySpec, collection) -> Page:
        query = spec.to_filter()
        cursor = (
            collection.find(query).sort(spec.sort).skip(spec.skip).limit(spec.limit)
        )
        items = list(cursor)
        total_count = collection.count_documents(query)
        return Page(
            items=items,
            total_count=total_count,
            page=spec.page,
            page_size=spec.page_size,
        )

    def _parse_page(self, value) -> int:
        parsed = _parse_int(value)
        if parsed is None or parsed < 1:
            return 1
        return parsed

    def _parse_page_size(self, value) -> int:
        parsed = _parse_int(value)
        if parsed is None or parsed < 1:
            return self.settings.default_page_size
        if parsed > self.settings.max_page_size:
            raise ValidationError(
                f"Parameter pageSize must not exceed {self.settings.max_page_size}."
            )
        return parsed

    def _build_search(self, value, resource: Resource) -> Optional[TextSearch]:
        search = str(value or "").strip()
        if not search or not resource.search_fields:
            return None
        pattern = re.compile(escape_pattern(search), re.IGNORECASE)
        numeric_value = None
        if resource.numeric_search_field:
            numeric_value = _parse_int(search)
        return TextSearch(
            fields=resource.search_fields,
            pattern=pattern,
            numeric_field=resource.numeric_search_field,
            numeric_value=numeric_value,
        )

    def _build_date_range(
        self, param: str, store_field: str, params: Mapping[str, Any]
    ) -> Optional[DateRange]:
        raw_start = params.get(f"{param}From")
        raw_end = params.get(f"{param}To")
        start = parse_iso_date(raw_start)
        end = parse_iso_date(raw_end, end_of_day=True)
        if str(raw_start or "").strip() and start is None:
            raise ValidationError(f"Parameter {param}From must be an ISO date.")
        if str(raw_end or "").strip() and end is None:
            raise ValidationError(f"Parameter {param}To must be an ISO date.")
        if start is None and end is None:
            return None
        return DateRange(store_field, start, end)

    def _build_owner_scope(
        self, params: Mapping[str, Any], auth: AuthContext, resource: Resource
    ) -> Optional[OwnerScope]:
        if not resource.owner_field:
            return None

        # Caller-supplied scoping never widens access.
        if not auth.is_admin:
            return OwnerScope(resource.owner_field, auth.subject_id)

        requested_owner = str(
            params.get("owner") or params.get("customer") or ""
        ).strip()
        if not requested_owner:
            return None
        try:
            ObjectId(requested_owner)
        except (InvalidId, TypeError):
            raise ValidationError("Parameter owner must be a valid identifier.")
        return OwnerScope(resource.owner_field, requested_owner)

