"""Exceptions raised by the segment rule tree and its editor."""

from __future__ import annotations

from typing import Sequence


class RuleTreeError(Exception):
    """Base class for rule tree contract violations."""


class PathNotFound(RuleTreeError, LookupError):
    """An index along the path is out of range (or descends into a condition)."""

    def __init__(self, path: Sequence[int]):
        self.path = list(path)
        super().__init__(f"No rule node at path {self.path}")


class NotAGroup(RuleTreeError, TypeError):
    def __init__(self, path: Sequence[int]):
        self.path = list(path)
        super().__init__(f"Rule node at path {self.path} is a condition, not a group")


class CannotRemoveRoot(RuleTreeError, ValueError):
    def __init__(self):
        super().__init__("The root rule group cannot be removed")


class InvalidRuleKey(RuleTreeError, ValueError):
    def __init__(self, key: str, path: Sequence[int], allowed: Sequence[str]):
        self.key = key
        self.path = list(path)
        super().__init__(
            f"Key {key!r} cannot be set on the node at path {self.path}; "
            f"expected one of {sorted(allowed)}"
        )


class InvalidRuleValue(RuleTreeError, ValueError):
    """The assignment produced a node that does not validate."""


class InvalidOperator(InvalidRuleValue):
    def __init__(self, operator: object):
        self.operator = operator
        super().__init__(f"Group operator must be AND or OR, got {operator!r}")


class RuleValidationError(RuleTreeError, ValueError):
    """A complete rule tree cannot be evaluated (type mismatch or bad value)."""

    def __init__(self, message: str, path: Sequence[int] = ()):
        self.path = list(path)
        self.message = message
        super().__init__(message)
