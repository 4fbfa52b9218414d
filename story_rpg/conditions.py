"""Declarative achievement conditions evaluated against a game-state snapshot.

Evaluation is fail-closed: an unknown condition type, an unknown operator or
a non-numeric counter yields False instead of raising, so one bad
definition never blocks the others.
"""

from __future__ import annotations

import logging
import operator as op
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from story_rpg.models import (
    ChoiceCondition,
    Condition,
    CounterCondition,
    FlagCondition,
    GameState,
    StoryProgressCondition,
)

logger = logging.getLogger(__name__)

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": op.eq,
    "gt": op.gt,
    "gte": op.ge,
    "lt": op.lt,
    "lte": op.le,
}

_condition_adapter: TypeAdapter[Condition] = TypeAdapter(Condition)


def parse_condition(raw: Mapping[str, Any]) -> Condition | None:
    """Decode a raw condition mapping; None for shapes outside the closed set."""
    try:
        return _condition_adapter.validate_python(dict(raw))
    except ValidationError as e:
        logger.warning("Unknown condition shape %r: %s", raw, e.errors()[0]["msg"])
        return None


def compare_values(actual: Any, target: Any, operator: str) -> bool:
    fn = _OPERATORS.get(operator)
    if fn is None:
        return False
    return fn(actual, target)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate(condition: Condition | Mapping[str, Any] | None, state: GameState) -> bool:
    """Return True when ``condition`` holds for ``state``."""
    if isinstance(condition, Mapping):
        condition = parse_condition(condition)
    if condition is None:
        return False

    if isinstance(condition, CounterCondition):
        actual = state.counter(condition.key)
        if actual is None:
            actual = 0
        if not _is_number(actual):
            return False
        return compare_values(actual, condition.value, condition.operator)

    if isinstance(condition, FlagCondition):
        return state.flags.get(condition.key) is True

    if isinstance(condition, ChoiceCondition):
        return condition.value in state.choices

    if isinstance(condition, StoryProgressCondition):
        return state.current_scene == condition.value

    return False
