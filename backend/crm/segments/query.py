"""Compile segment rule trees to SQL and compute audience previews."""

from __future__ import annotations

import operator as op
from datetime import datetime, timedelta
from typing import Optional, Union

from loguru import logger
from sqlalchemy import Select, and_, func, not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from crm.core.config import settings
from crm.models.customer import Customer
from crm.schemas.segment import AudiencePreviewOut
from crm.segments.errors import RuleValidationError
from crm.segments.rules import (
    ConditionKind,
    ConditionNode,
    FieldName,
    FieldType,
    GroupNode,
    Operator,
    coerce_value,
    field_type,
    is_complete,
    validate_tree,
)

FIELD_COLUMNS = {
    FieldName.TOTAL_SPEND: Customer.total_spend,
    FieldName.TOTAL_VISITS: Customer.total_visits,
    FieldName.LAST_ACTIVITY: Customer.last_activity,
    FieldName.EMAIL: Customer.email,
    FieldName.NAME: Customer.name,
    FieldName.ADDRESS: Customer.address,
    FieldName.PHONE: Customer.phone,
}

_NUMBER_OPS = {
    ConditionKind.EQ: op.eq,
    ConditionKind.NE: op.ne,
    ConditionKind.GT: op.gt,
    ConditionKind.LT: op.lt,
    ConditionKind.GTE: op.ge,
    ConditionKind.LTE: op.le,
}


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _compile_condition(node: ConditionNode, now: datetime) -> ColumnElement[bool]:
    column = FIELD_COLUMNS[FieldName(node.field)]
    kind = ConditionKind(node.condition)
    value = coerce_value(node.field, node.value)
    ftype = field_type(node.field)

    if ftype is FieldType.DATE:
        cutoff = now - timedelta(days=value)
        if kind is ConditionKind.INACTIVE_DAYS:
            # Customers with no recorded activity count as inactive.
            return or_(column.is_(None), column < cutoff)
        return column >= cutoff

    if ftype is FieldType.NUMBER:
        return _NUMBER_OPS[kind](column, value)

    if kind is ConditionKind.EQ:
        return column == value
    if kind is ConditionKind.NE:
        return or_(column.is_(None), column != value)
    contains = column.ilike(_like_pattern(value), escape="\\")
    if kind is ConditionKind.CONTAINS:
        return contains
    return or_(column.is_(None), not_(contains))


def _compile(node: Union[GroupNode, ConditionNode], now: datetime) -> ColumnElement[bool]:
    if isinstance(node, GroupNode):
        clauses = [_compile(child, now) for child in node.children]
        if node.operator == Operator.OR:
            return or_(*clauses)
        return and_(*clauses)
    return _compile_condition(node, now)


def build_segment_filter(tree: GroupNode, *, now: Optional[datetime] = None) -> ColumnElement[bool]:
    """Compile a complete tree into a boolean expression over ``customers``.

    ``INACTIVE_DAYS``/``ACTIVE_DAYS`` are measured back from ``now``.
    """

    if not is_complete(tree):
        raise RuleValidationError("Segment rules are incomplete")
    validate_tree(tree)
    return _compile(tree, now or datetime.now())


def audience_count_query(criteria: ColumnElement[bool]) -> Select:
    return select(func.count(Customer.id)).where(criteria)


def audience_sample_query(criteria: ColumnElement[bool], limit: int) -> Select:
    return (
        select(Customer.email)
        .where(criteria, Customer.email.is_not(None), Customer.email != "")
        .order_by(Customer.id)
        .limit(limit)
    )


async def evaluate_audience(
    session: AsyncSession,
    tree: GroupNode,
    *,
    now: Optional[datetime] = None,
    sample_size: Optional[int] = None,
) -> AudiencePreviewOut:
    """Count the customers matching ``tree`` and return a few of their emails.

    Empty or incomplete trees short-circuit to an empty preview without
    touching the database. Raises ``RuleValidationError`` for trees that are
    complete but not evaluable.
    """

    if not is_complete(tree):
        return AudiencePreviewOut.empty()

    criteria = build_segment_filter(tree, now=now)
    limit = sample_size if sample_size is not None else settings.AUDIENCE_SAMPLE_SIZE

    audience_size = (await session.execute(audience_count_query(criteria))).scalar() or 0
    sample = (await session.execute(audience_sample_query(criteria, limit))).scalars().all()

    logger.bind(audience_size=audience_size, sample_size=len(sample)).info("audience_evaluated")
    return AudiencePreviewOut(
        audience_size=audience_size,
        sample_customer_emails=[str(email) for email in sample],
    )
