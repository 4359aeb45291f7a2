"""Segment rule tree: field catalogue, node models and structural checks.

A segment is a tree of ``GroupNode`` (AND/OR over children) and
``ConditionNode`` (field / condition / value) entries. The root is always a
group. Conditions with an empty ``field`` or ``condition`` are drafts: they
are kept in the tree for editing but make the tree incomplete, and an
incomplete tree is never evaluated.

The wire shape uses the keys ``operator``, ``children``, ``field``,
``condition`` and ``value``. ``rules`` is accepted in place of ``children``
on input for older clients.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Any, Iterator, Optional, Sequence, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)

from crm.segments.errors import RuleValidationError


class FieldType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    DATE = "date"


class FieldName(str, Enum):
    TOTAL_SPEND = "totalSpend"
    TOTAL_VISITS = "totalVisits"
    LAST_ACTIVITY = "lastActivity"
    EMAIL = "email"
    NAME = "name"
    ADDRESS = "address"
    PHONE = "phone"


class Operator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionKind(str, Enum):
    EQ = "EQ"
    NE = "NE"
    GT = "GT"
    LT = "LT"
    GTE = "GTE"
    LTE = "LTE"
    CONTAINS = "CONTAINS"
    NOCONTAINS = "NOCONTAINS"
    INACTIVE_DAYS = "INACTIVE_DAYS"
    ACTIVE_DAYS = "ACTIVE_DAYS"


FIELD_TYPES: dict[FieldName, FieldType] = {
    FieldName.TOTAL_SPEND: FieldType.NUMBER,
    FieldName.TOTAL_VISITS: FieldType.NUMBER,
    FieldName.LAST_ACTIVITY: FieldType.DATE,
    FieldName.EMAIL: FieldType.STRING,
    FieldName.NAME: FieldType.STRING,
    FieldName.ADDRESS: FieldType.STRING,
    FieldName.PHONE: FieldType.STRING,
}

FIELD_LABELS: dict[FieldName, str] = {
    FieldName.TOTAL_SPEND: "Total Spend",
    FieldName.TOTAL_VISITS: "Total Visits",
    FieldName.LAST_ACTIVITY: "Last Activity",
    FieldName.EMAIL: "Email",
    FieldName.NAME: "Name",
    FieldName.ADDRESS: "Address",
    FieldName.PHONE: "Phone",
}

CONDITIONS_BY_TYPE: dict[FieldType, tuple[ConditionKind, ...]] = {
    FieldType.NUMBER: (
        ConditionKind.EQ,
        ConditionKind.NE,
        ConditionKind.GT,
        ConditionKind.LT,
        ConditionKind.GTE,
        ConditionKind.LTE,
    ),
    FieldType.STRING: (
        ConditionKind.EQ,
        ConditionKind.NE,
        ConditionKind.CONTAINS,
        ConditionKind.NOCONTAINS,
    ),
    FieldType.DATE: (ConditionKind.INACTIVE_DAYS, ConditionKind.ACTIVE_DAYS),
}

CONDITION_LABELS: dict[ConditionKind, str] = {
    ConditionKind.EQ: "Equals",
    ConditionKind.NE: "Not Equals",
    ConditionKind.GT: "Greater Than",
    ConditionKind.LT: "Less Than",
    ConditionKind.GTE: "Greater Than or Equal To",
    ConditionKind.LTE: "Less Than or Equal To",
    ConditionKind.CONTAINS: "Contains",
    ConditionKind.NOCONTAINS: "Does Not Contain",
    ConditionKind.INACTIVE_DAYS: "Inactive for (days)",
    ConditionKind.ACTIVE_DAYS: "Active within (days)",
}

GROUP_KEYS = frozenset({"operator"})
CONDITION_KEYS = frozenset({"field", "condition", "value"})

_FIELD_VALUES = {f.value for f in FieldName}
_CONDITION_VALUES = {c.value for c in ConditionKind}

RuleValue = Union[int, float, str]

# Longest look-back a date condition accepts (about a century).
MAX_DAY_COUNT = 36_525


class ConditionNode(BaseModel):
    """Single ``field condition value`` predicate; empty strings mark a draft."""

    model_config = ConfigDict(extra="forbid")

    field: str = ""
    condition: str = ""
    value: Optional[RuleValue] = ""

    @field_validator("field")
    @classmethod
    def _known_field(cls, v: str) -> str:
        if v and v not in _FIELD_VALUES:
            raise ValueError(f"Unknown segment field {v!r}")
        return v

    @field_validator("condition")
    @classmethod
    def _known_condition(cls, v: str) -> str:
        if v and v not in _CONDITION_VALUES:
            raise ValueError(f"Unknown condition {v!r}")
        return v


class GroupNode(BaseModel):
    """Boolean combinator over child nodes."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, use_enum_values=True)

    operator: Operator = Operator.AND
    children: list[RuleNode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("children", "rules"),
    )


def _node_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "group" if "operator" in value else "condition"
    return "group" if isinstance(value, GroupNode) else "condition"


RuleNode = Annotated[
    Union[Annotated[GroupNode, Tag("group")], Annotated[ConditionNode, Tag("condition")]],
    Discriminator(_node_kind),
]

GroupNode.model_rebuild()


def empty_tree() -> GroupNode:
    return GroupNode(operator=Operator.AND, children=[])


def load_tree(data: Any) -> GroupNode:
    """Validate a plain nested structure into a tree; the root must be a group.

    Raises ``pydantic.ValidationError`` for malformed input.
    """

    return GroupNode.model_validate(data)


def dump_tree(tree: GroupNode) -> dict[str, Any]:
    """Canonical plain structure for the wire and for persistence."""

    return tree.model_dump(mode="json")


def field_type(field: str) -> FieldType:
    return FIELD_TYPES[FieldName(field)]


def conditions_for_field(field: str) -> tuple[ConditionKind, ...]:
    """Conditions an editor may offer for ``field``; empty for a blank field."""

    if not field:
        return ()
    return CONDITIONS_BY_TYPE[field_type(field)]


def field_catalog() -> list[dict[str, Any]]:
    return [
        {
            "value": name.value,
            "label": FIELD_LABELS[name],
            "type": FIELD_TYPES[name].value,
            "conditions": [
                {"value": kind.value, "label": CONDITION_LABELS[kind]}
                for kind in CONDITIONS_BY_TYPE[FIELD_TYPES[name]]
            ],
        }
        for name in FieldName
    ]


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def is_complete(node: Union[GroupNode, ConditionNode]) -> bool:
    """True when every group has children and every condition is fully filled in."""

    if isinstance(node, GroupNode):
        return bool(node.children) and all(is_complete(child) for child in node.children)
    return bool(node.field) and bool(node.condition) and not _is_blank(node.value)


def coerce_value(field: str, raw: Any) -> RuleValue:
    """Convert editor input to the stored type for ``field``.

    Number fields hold a finite ``int``/``float``, date fields a whole day
    count from 0 to ``MAX_DAY_COUNT``, string fields text. Blank input
    stays ``''``. Raises ``ValueError`` when the input cannot be converted
    or is out of range.
    """

    if _is_blank(raw):
        return ""
    kind = field_type(field)
    if kind is FieldType.STRING:
        return str(raw)
    if isinstance(raw, bool):
        raise ValueError(f"{field} expects a number, got {raw!r}")
    if isinstance(raw, str):
        text = raw.strip()
        try:
            number: Union[int, float] = int(text)
        except ValueError:
            number = float(text)
    elif isinstance(raw, (int, float)):
        number = raw
    else:
        raise ValueError(f"{field} expects a number, got {raw!r}")
    if isinstance(number, float) and not math.isfinite(number):
        raise ValueError(f"{field} expects a finite number, got {raw!r}")

    if kind is FieldType.DATE:
        if number != int(number) or number < 0:
            raise ValueError(f"{field} expects a whole number of days, got {raw!r}")
        if number > MAX_DAY_COUNT:
            raise ValueError(f"{field} accepts at most {MAX_DAY_COUNT} days, got {raw!r}")
        return int(number)
    return number


def iter_conditions(
    node: Union[GroupNode, ConditionNode], path: Sequence[int] = ()
) -> Iterator[tuple[list[int], ConditionNode]]:
    """Yield ``(path, condition)`` pairs depth-first, in display order."""

    if isinstance(node, GroupNode):
        for index, child in enumerate(node.children):
            yield from iter_conditions(child, [*path, index])
    else:
        yield list(path), node


def validate_tree(tree: GroupNode) -> None:
    """Check every complete condition is evaluable.

    Editors may leave a condition that no longer fits its field after the
    field changes; that mismatch is rejected here rather than evaluated.
    """

    for path, node in iter_conditions(tree):
        if not node.field or not node.condition:
            continue
        kind = field_type(node.field)
        if ConditionKind(node.condition) not in CONDITIONS_BY_TYPE[kind]:
            raise RuleValidationError(
                f"Condition {node.condition} is not valid for {kind.value} field {node.field}",
                path,
            )
        if _is_blank(node.value):
            continue
        try:
            coerce_value(node.field, node.value)
        except ValueError as exc:
            raise RuleValidationError(str(exc), path) from exc
