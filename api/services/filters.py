"""
Admin subscription search: query params to typed predicates to SQL.

build_subscription_filter() only produces Predicate values; to_clauses()
re-checks every predicate against ALLOWED_OPS before compiling it, so a
predicate list built anywhere else cannot reach the database unchecked.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import or_, cast, String
from sqlalchemy.sql.elements import ColumnElement

from models.subscription_plan import SubscriptionPlan
from models.user import User
from models.user_subscription import UserSubscription
from services import timezone

STATUS_GROUPS = {
    "newer": ("pending", "active"),
    "older": ("completed", "cancelled", "expired"),
}

ALLOWED_OPS = {
    "status": {"eq", "in"},
    "is_vendor_assigned": {"eq"},
    "created_at": {"gte", "lte"},
    "final_price": {"gte", "lte"},
    "plan_id": {"eq"},
    "current_vendor_id": {"eq"},
    "plan.category": {"eq"},
    "search": {"ilike"},
}

SORTABLE_FIELDS = {
    "created_at": UserSubscription.created_at,
    "start_date": UserSubscription.start_date,
    "end_date": UserSubscription.end_date,
    "final_price": UserSubscription.final_price,
    "status": UserSubscription.status,
}


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any


class InvalidFilter(ValueError):
    pass


def build_subscription_filter(query) -> list[Predicate]:
    """Translate a validated AdminSubscriptionQuery (or any object with the same attributes)."""
    predicates: list[Predicate] = []

    if query.search:
        predicates.append(Predicate("search", "ilike", query.search.strip()))

    if query.status:
        if query.status in STATUS_GROUPS:
            predicates.append(Predicate("status", "in", STATUS_GROUPS[query.status]))
        else:
            predicates.append(Predicate("status", "eq", query.status))

    if query.vendor_assigned == "assigned":
        predicates.append(Predicate("is_vendor_assigned", "eq", True))
    elif query.vendor_assigned == "unassigned":
        predicates.append(Predicate("is_vendor_assigned", "eq", False))

    if query.date_from:
        predicates.append(Predicate("created_at", "gte", timezone.start_of_day(query.date_from)))
    if query.date_to:
        predicates.append(Predicate("created_at", "lte", timezone.end_of_day(query.date_to)))

    if query.price_min is not None:
        predicates.append(Predicate("final_price", "gte", query.price_min))
    if query.price_max is not None:
        predicates.append(Predicate("final_price", "lte", query.price_max))

    if query.plan_id:
        predicates.append(Predicate("plan_id", "eq", query.plan_id))
    if getattr(query, "vendor_id", None):
        predicates.append(Predicate("current_vendor_id", "eq", query.vendor_id))
    if query.category:
        predicates.append(Predicate("plan.category", "eq", query.category))

    validate_predicates(predicates)
    return predicates


def validate_predicates(predicates: list[Predicate]):
    for p in predicates:
        allowed = ALLOWED_OPS.get(p.field)
        if allowed is None:
            raise InvalidFilter(f"Unknown filter field: {p.field}")
        if p.op not in allowed:
            raise InvalidFilter(f"Operator {p.op!r} not allowed on {p.field}")
        if p.op == "in" and not isinstance(p.value, (list, tuple)):
            raise InvalidFilter(f"{p.field} 'in' filter needs a sequence")
        if isinstance(p.value, date) and p.op not in ("gte", "lte"):
            raise InvalidFilter(f"{p.field} date value needs a range operator")


def needs_plan_join(predicates: list[Predicate]) -> bool:
    return any(p.field in ("plan.category", "search") for p in predicates)


def needs_user_join(predicates: list[Predicate]) -> bool:
    return any(p.field == "search" for p in predicates)


def _column(field_name: str):
    if field_name == "plan.category":
        return SubscriptionPlan.category
    return getattr(UserSubscription, field_name)


def to_clauses(predicates: list[Predicate]) -> list[ColumnElement]:
    """
    Compile predicates to SQLAlchemy clauses. Callers joining on
    SubscriptionPlan / User must check needs_plan_join / needs_user_join.
    """
    validate_predicates(predicates)
    clauses: list[ColumnElement] = []
    for p in predicates:
        if p.field == "search":
            pattern = f"%{p.value}%"
            address = UserSubscription.delivery_address
            clauses.append(or_(
                cast(UserSubscription.id, String).ilike(pattern),
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone.ilike(pattern),
                SubscriptionPlan.plan_name.ilike(pattern),
                address["city"].astext.ilike(pattern),
                address["zip_code"].astext.ilike(pattern),
            ))
            continue

        column = _column(p.field)
        if p.op == "eq":
            clauses.append(column == p.value)
        elif p.op == "in":
            clauses.append(column.in_(list(p.value)))
        elif p.op == "gte":
            clauses.append(column >= p.value)
        elif p.op == "lte":
            clauses.append(column <= p.value)
    return clauses


def sort_clause(sort_by: str, sort_order: str):
    column = SORTABLE_FIELDS.get(sort_by)
    if column is None:
        raise InvalidFilter(f"Cannot sort by {sort_by}")
    return column.asc() if sort_order == "asc" else column.desc()
