"""Pure structural edits on a segment rule tree.

Every operation returns a new tree and leaves its input untouched. Ancestors
along the edited path are rebuilt and every other node is deep-copied, so the
old and new trees never share a mutable node or list.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence, Union, cast

from pydantic import ValidationError

from crm.segments.errors import (
    CannotRemoveRoot,
    InvalidOperator,
    InvalidRuleKey,
    InvalidRuleValue,
    NotAGroup,
    PathNotFound,
)
from crm.segments.rules import (
    CONDITION_KEYS,
    GROUP_KEYS,
    ConditionNode,
    GroupNode,
    Operator,
)

Node = Union[GroupNode, ConditionNode]
Path = Sequence[int]


def node_at(tree: GroupNode, path: Path) -> Node:
    """Return the node reached by descending ``children`` at each index of ``path``."""

    node: Node = tree
    for depth, index in enumerate(path):
        if not isinstance(node, GroupNode) or not 0 <= index < len(node.children):
            raise PathNotFound(path[: depth + 1])
        node = node.children[index]
    return node


def _rebuild(node: Node, path: Path, replace: Callable[[Node], Node]) -> Node:
    if not path:
        return replace(node)
    # node_at has already checked that every step of the path is a group.
    group = cast(GroupNode, node)
    index, rest = path[0], path[1:]
    children = [
        _rebuild(child, rest, replace) if i == index else child.model_copy(deep=True)
        for i, child in enumerate(group.children)
    ]
    return GroupNode(operator=group.operator, children=children)


def _edit(tree: GroupNode, path: Path, replace: Callable[[Node], Node]) -> GroupNode:
    node_at(tree, path)
    return cast(GroupNode, _rebuild(tree, list(path), replace))


def update_field(tree: GroupNode, path: Path, key: str, value: Any) -> GroupNode:
    """Set ``key`` on the node at ``path``.

    Groups accept ``operator``; conditions accept ``field``, ``condition`` and
    ``value``. Changing ``field`` does not clear ``condition`` or ``value``.
    """

    target = node_at(tree, path)
    allowed = GROUP_KEYS if isinstance(target, GroupNode) else CONDITION_KEYS
    if key not in allowed:
        raise InvalidRuleKey(key, path, allowed)

    def assign(node: Node) -> Node:
        data = node.model_dump()
        data[key] = value
        try:
            return type(node).model_validate(data)
        except ValidationError as exc:
            raise InvalidRuleValue(
                f"Cannot set {key}={value!r} at path {list(path)}: {exc.errors()[0]['msg']}"
            ) from exc

    return _edit(tree, path, assign)


def set_operator(tree: GroupNode, path: Path, operator: Union[Operator, str]) -> GroupNode:
    if operator not in (Operator.AND, Operator.OR):
        raise InvalidOperator(operator)
    return update_field(tree, path, "operator", Operator(operator).value)


def add_child(tree: GroupNode, path: Path, as_group: bool = False) -> GroupNode:
    """Append an empty AND group or a draft condition as the last child of the group at ``path``."""

    if not isinstance(node_at(tree, path), GroupNode):
        raise NotAGroup(path)

    def append(node: Node) -> Node:
        copy = cast(GroupNode, node.model_copy(deep=True))
        if as_group:
            copy.children.append(GroupNode(operator=Operator.AND, children=[]))
        else:
            copy.children.append(ConditionNode(field="", condition="", value=""))
        return copy

    return _edit(tree, path, append)


def remove_child(tree: GroupNode, path: Path) -> GroupNode:
    if not path:
        raise CannotRemoveRoot()
    node_at(tree, path)
    index = path[-1]

    def drop(parent: Node) -> Node:
        copy = cast(GroupNode, parent.model_copy(deep=True))
        del copy.children[index]
        return copy

    return _edit(tree, path[:-1], drop)
