"""Core domain models.

Every engine component operates on these types. Pydantic is used for
validation and serialisation at every data boundary: definition files,
save files and the model HTTP API.

JSON uses the camelCase names of the definition/save format
(``worldSetting``, ``turnCount``, ...); Python code uses snake_case.
Both spellings are accepted on input.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenRecord(_Record):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# ---------------------------------------------------------------------------
# Story definition
# ---------------------------------------------------------------------------

class Character(_FrozenRecord):
    """A character the narrator should keep in mind."""

    name: str
    personality: str | None = None
    background: str | None = None
    goals: str | None = None


class Scene(_FrozenRecord):
    """A keyword-triggered visual context switch."""

    id: str
    image: str
    keywords: list[str] = Field(default_factory=list)

    def matches(self, text: str) -> bool:
        return any(kw and kw in text for kw in self.keywords)


class StoryDefinition(_FrozenRecord):
    world_setting: str = ""
    tone: str = ""
    characters: list[Character] = Field(default_factory=list)
    plot_guidelines: str = ""
    scenes: list[Scene] = Field(default_factory=list)

    @classmethod
    def default(cls) -> StoryDefinition:
        """Fallback story used when no definition file can be read."""
        return cls(
            world_setting="這是一個奇幻世界",
            tone="冒險、神秘",
            plot_guidelines="玩家是一位冒險者，在這個世界探索未知。",
        )


# ---------------------------------------------------------------------------
# Game state
# ---------------------------------------------------------------------------

class GameState(_Record):
    """The single mutable progress record of a session.

    ``history`` and ``choices`` are append-only; the engine keeps
    ``turn_count == len(history)`` and ``choice_count == len(choices)``.
    """

    turn_count: int = 0
    choice_count: int = 0
    current_story: str = ""
    history: list[str] = Field(default_factory=list)
    flags: dict[str, bool] = Field(default_factory=dict)
    choices: list[str] = Field(default_factory=list)
    current_scene: str | None = None
    current_image: str | None = None

    def counter(self, key: str) -> Any:
        """Look up a top-level field by alias or attribute name; 0 if unknown."""
        for name, field in type(self).model_fields.items():
            if key == name or key == field.alias:
                return getattr(self, name)
        return 0

    def snapshot(self) -> GameState:
        return self.model_copy(deep=True)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------

Operator = Literal["eq", "gt", "gte", "lt", "lte"]


class CounterCondition(_FrozenRecord):
    type: Literal["counter"]
    key: str
    value: int | float
    operator: Operator = "gte"


class FlagCondition(_FrozenRecord):
    type: Literal["flag"]
    key: str


class ChoiceCondition(_FrozenRecord):
    type: Literal["choice"]
    value: str


class StoryProgressCondition(_FrozenRecord):
    type: Literal["story_progress"]
    value: str


Condition = Annotated[
    Union[CounterCondition, FlagCondition, ChoiceCondition, StoryProgressCondition],
    Field(discriminator="type"),
]


class Achievement(_FrozenRecord):
    id: str
    name: str
    description: str = ""
    # None when the definition's condition could not be decoded.
    condition: Condition | None = None

    @field_validator("condition", mode="wrap")
    @classmethod
    def _drop_unknown_condition(cls, value: Any, handler: Any) -> Any:
        try:
            return handler(value)
        except ValidationError as e:
            logger.warning(
                "Unknown condition shape %r ignored: %s", value, e.errors()[0]["msg"]
            )
            return None


class AchievementStats(BaseModel):
    total: int
    unlocked: int
    percentage: int


# ---------------------------------------------------------------------------
# Collaborator outcomes
# ---------------------------------------------------------------------------

class SaveOutcome(BaseModel):
    """Result of a persistence write. Failures are reported, never raised."""

    success: bool
    message: str = ""


class SaveInfo(_Record):
    timestamp: str
    turn_count: int = 0
    choice_count: int = 0


class ConnectionStatus(BaseModel):
    success: bool
    message: str
    models: list[dict[str, Any]] = Field(default_factory=list)
