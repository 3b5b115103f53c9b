"""
Condition Evaluator

Evaluates segment condition trees against a customer snapshot.

Supports operators:
- equals, not_equals: case-insensitive for two strings, exact otherwise
- contains, not_contains, starts_with, ends_with: string matching
- greater_than, less_than (and the _or_equal forms): numeric, non-numeric is false
- between: inclusive, range as [min, max] or "min,max"
- in, not_in: list membership, list or comma separated string
- is_empty, is_not_empty (exists / not_exists): blank test
- in_last_days, before_date, after_date: timestamp comparisons

A field that is unknown or has no value fails every operator except the
emptiness tests. Anything that cannot be compared evaluates to False, so
a broken filter excludes customers instead of failing the batch.

Condition group format:
{
    "logical_operator": "AND" | "OR",
    "conditions": [
        {"field": "total_spent", "operator": "greater_than", "value": 500},
        {"field": "customer_tags", "operator": "contains", "value": "vip"}
    ],
    "nested_groups": [
        {"logical_operator": "OR", "conditions": [...]}
    ]
}
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from app.core.clock import parse_timestamp
from app.schemas.customer import CustomerSnapshot, EventOccurrence, OrderSnapshot, RFMScore
from app.schemas.segment import Condition, ConditionGroup, ConditionOperator, LogicalOperator
from app.services.journeys import rfm_scorer

logger = logging.getLogger(__name__)


class _Missing:
    """Value of a field the evaluator does not know."""

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()

Op = ConditionOperator

EMPTY_OPERATORS = {Op.IS_EMPTY, Op.NOT_EXISTS, Op.DOES_NOT_EXIST}
NOT_EMPTY_OPERATORS = {Op.IS_NOT_EMPTY, Op.EXISTS}


@dataclass
class EvaluationContext:
    """Everything besides the snapshot that a condition may need."""

    now: datetime
    orders: Sequence[OrderSnapshot] = ()
    events: Sequence[EventOccurrence] = ()
    segment_ids: frozenset[str] = frozenset()
    rfm: Optional[RFMScore] = field(default=None)

    def rfm_for(self, customer: CustomerSnapshot) -> RFMScore:
        if self.rfm is None:
            self.rfm = rfm_scorer.calculate_rfm(customer, list(self.orders), self.now)
        return self.rfm


def _first_order_date(customer: CustomerSnapshot, ctx: EvaluationContext):
    if not ctx.orders:
        return None
    return min(order.created_at for order in ctx.orders)


def _last_order_date(customer: CustomerSnapshot, ctx: EvaluationContext):
    if ctx.orders:
        return max(order.created_at for order in ctx.orders)
    return customer.last_order_at


def _days_since_last_order(customer: CustomerSnapshot, ctx: EvaluationContext) -> int:
    return rfm_scorer.days_since(_last_order_date(customer, ctx), ctx.now)


def _average_order_value(customer: CustomerSnapshot, ctx: EvaluationContext) -> float:
    if not customer.orders_count:
        return 0.0
    return round(customer.total_spent / customer.orders_count, 2)


def _orders_in_last_days(days: int):
    def resolve(customer: CustomerSnapshot, ctx: EvaluationContext) -> int:
        since = ctx.now - timedelta(days=days)
        return sum(1 for order in ctx.orders if order.created_at >= since)
    return resolve


def _address_part(attr: str):
    def resolve(customer: CustomerSnapshot, ctx: EvaluationContext):
        address = customer.default_address
        return getattr(address, attr) if address else None
    return resolve


FieldResolver = Callable[[CustomerSnapshot, EvaluationContext], Any]

# Mapping of condition field names to customer values
FIELD_RESOLVERS: dict[str, FieldResolver] = {
    # Identity
    "customer_name": lambda c, ctx: c.full_name,
    "customer_email": lambda c, ctx: c.email,
    "customer_phone": lambda c, ctx: c.phone,
    "customer_tags": lambda c, ctx: list(c.tags),
    "customer_interests": lambda c, ctx: list(c.interests),
    "customer_since": lambda c, ctx: c.created_at,
    # Location
    "location_country": _address_part("country"),
    "location_city": _address_part("city"),
    "location_state": _address_part("province"),
    "location_postal_code": _address_part("zip"),
    "location_address": _address_part("address1"),
    # Consent
    "accepts_marketing": lambda c, ctx: c.accepts_marketing,
    "marketing_opt_in": lambda c, ctx: c.accepts_marketing,
    "email_opt_in": lambda c, ctx: c.accepts_marketing,
    "sms_opt_in": lambda c, ctx: c.sms_opt_in,
    # Orders
    "total_orders": lambda c, ctx: c.orders_count,
    "total_spent": lambda c, ctx: c.total_spent,
    "average_order_value": _average_order_value,
    "first_order_date": _first_order_date,
    "last_order_date": _last_order_date,
    "days_since_last_order": _days_since_last_order,
    "never_ordered": lambda c, ctx: c.orders_count == 0 and not ctx.orders,
    "orders_in_last_30_days": _orders_in_last_days(30),
    # RFM
    "rfm_recency_score": lambda c, ctx: ctx.rfm_for(c).recency,
    "rfm_frequency_score": lambda c, ctx: ctx.rfm_for(c).frequency,
    "rfm_monetary_score": lambda c, ctx: ctx.rfm_for(c).monetary,
    "rfm_segment": lambda c, ctx: ctx.rfm_for(c).segment,
}

PROPERTY_PREFIX = "properties."


def resolve_field(customer: CustomerSnapshot, field_name: str, ctx: EvaluationContext) -> Any:
    """Value of ``field_name`` for the customer, or MISSING when the field is unknown."""
    resolver = FIELD_RESOLVERS.get(field_name)
    if resolver is not None:
        return resolver(customer, ctx)
    if field_name.startswith(PROPERTY_PREFIX):
        return customer.properties.get(field_name[len(PROPERTY_PREFIX):], MISSING)
    logger.debug(f"Unknown condition field: {field_name}")
    return MISSING


# Value helpers


def _is_blank(value: Any) -> bool:
    if value is None or value is MISSING:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_list(value: Any) -> Optional[list]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return None


def _norm(value: Any) -> Any:
    return value.strip().casefold() if isinstance(value, str) else value


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return _norm(actual) == _norm(expected)
    if isinstance(actual, bool):
        if isinstance(expected, str) and _norm(expected) in ("true", "false"):
            return actual == (_norm(expected) == "true")
        return actual is expected if isinstance(expected, bool) else False
    if isinstance(actual, (int, float)) and isinstance(expected, str):
        number = to_number(expected)
        return number is not None and float(actual) == number
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return any(_values_equal(item, expected) for item in actual)
    if isinstance(actual, str) and expected is not None:
        return _norm(str(expected)) in _norm(actual)
    return False


def _string_edge(actual: Any, expected: Any, at_start: bool) -> bool:
    if not isinstance(actual, str) or expected is None:
        return False
    text, part = _norm(actual), _norm(str(expected))
    return text.startswith(part) if at_start else text.endswith(part)


def _compare_numbers(actual: Any, expected: Any, check: Callable[[float, float], bool]) -> bool:
    left, right = to_number(actual), to_number(expected)
    if left is None or right is None:
        return False
    return check(left, right)


def _between(actual: Any, expected: Any) -> bool:
    bounds = _as_list(expected)
    if bounds is None or len(bounds) != 2:
        return False
    low, high, value = to_number(bounds[0]), to_number(bounds[1]), to_number(actual)
    if low is None or high is None or value is None:
        return False
    return low <= value <= high


def _in_list(actual: Any, expected: Any) -> bool:
    options = _as_list(expected)
    if options is None:
        return False
    if isinstance(actual, (list, tuple, set)):
        return any(_values_equal(item, option) for item in actual for option in options)
    return any(_values_equal(actual, option) for option in options)


def _in_last_days(actual: Any, expected: Any, now: datetime) -> bool:
    moment, days = parse_timestamp(actual), to_number(expected)
    if moment is None or days is None:
        return False
    return moment >= now - timedelta(days=days)


def _date_compare(actual: Any, expected: Any, before: bool) -> bool:
    # An unreadable timestamp sits at +/- infinity, so neither comparison holds
    moment, boundary = parse_timestamp(actual), parse_timestamp(expected)
    if moment is None or boundary is None:
        return False
    return moment < boundary if before else moment > boundary


def compare(actual: Any, operator: ConditionOperator, expected: Any, now: datetime) -> bool:
    """Apply one operator to a resolved value."""
    if operator in EMPTY_OPERATORS:
        return _is_blank(actual)
    if operator in NOT_EMPTY_OPERATORS:
        return not _is_blank(actual)
    if actual is MISSING or actual is None:
        return False

    if operator == Op.EQUALS:
        if isinstance(actual, (list, tuple, set)):
            return _contains(actual, expected)
        return _values_equal(actual, expected)
    if operator == Op.NOT_EQUALS:
        if isinstance(actual, (list, tuple, set)):
            return not _contains(actual, expected)
        return not _values_equal(actual, expected)
    if operator == Op.CONTAINS:
        return _contains(actual, expected)
    if operator in (Op.NOT_CONTAINS, Op.DOES_NOT_CONTAIN):
        return not _contains(actual, expected)
    if operator == Op.STARTS_WITH:
        return _string_edge(actual, expected, at_start=True)
    if operator == Op.ENDS_WITH:
        return _string_edge(actual, expected, at_start=False)
    if operator == Op.GREATER_THAN:
        return _compare_numbers(actual, expected, lambda a, b: a > b)
    if operator == Op.LESS_THAN:
        return _compare_numbers(actual, expected, lambda a, b: a < b)
    if operator == Op.GREATER_THAN_OR_EQUAL:
        return _compare_numbers(actual, expected, lambda a, b: a >= b)
    if operator == Op.LESS_THAN_OR_EQUAL:
        return _compare_numbers(actual, expected, lambda a, b: a <= b)
    if operator == Op.BETWEEN:
        return _between(actual, expected)
    if operator == Op.IN:
        return _in_list(actual, expected)
    if operator == Op.NOT_IN:
        return not _in_list(actual, expected)
    if operator == Op.IN_LAST_DAYS:
        return _in_last_days(actual, expected, now)
    if operator == Op.BEFORE_DATE:
        return _date_compare(actual, expected, before=True)
    if operator == Op.AFTER_DATE:
        return _date_compare(actual, expected, before=False)

    logger.debug(f"Unsupported operator: {operator}")
    return False


def safe_compare(actual: Any, operator: ConditionOperator, expected: Any, now: datetime) -> bool:
    """``compare`` that fails closed on malformed input."""
    try:
        return compare(actual, operator, expected, now)
    except (TypeError, ValueError, ArithmeticError) as e:
        logger.debug(f"Condition {operator} failed closed: {e}")
        return False


def evaluate_condition(
    customer: CustomerSnapshot, condition: Condition, ctx: EvaluationContext
) -> bool:
    """Evaluate a single condition against a customer."""
    try:
        actual = resolve_field(customer, condition.field, ctx)
    except (TypeError, ValueError, ArithmeticError, AttributeError) as e:
        logger.debug(f"Field {condition.field} unresolvable for customer {customer.id}: {e}")
        return False
    return safe_compare(actual, condition.operator, condition.value, ctx.now)


def matches_group(
    customer: CustomerSnapshot, group: ConditionGroup, ctx: EvaluationContext
) -> bool:
    """
    Evaluate a condition group.

    Direct conditions come first, then nested groups; evaluation stops at the
    first result that decides the group. A group with nothing in it matches.
    """
    if not group.conditions and not group.nested_groups:
        return True

    results = itertools.chain(
        (evaluate_condition(customer, condition, ctx) for condition in group.conditions),
        (matches_group(customer, nested, ctx) for nested in group.nested_groups),
    )
    if group.logical_operator == LogicalOperator.OR:
        return any(results)
    return all(results)


def evaluate_segment(
    conditions: ConditionGroup,
    customers: Sequence[CustomerSnapshot],
    now: datetime,
    orders_by_customer: Optional[dict[str, Sequence[OrderSnapshot]]] = None,
) -> list[str]:
    """Ids of the customers matching ``conditions``, in input order."""
    orders_by_customer = orders_by_customer or {}
    return [
        customer.id
        for customer in customers
        if matches_group(
            customer,
            conditions,
            EvaluationContext(now=now, orders=orders_by_customer.get(customer.id, ())),
        )
    ]
