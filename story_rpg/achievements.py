"""Achievement tracking.

AchievementEngine holds the achievement definitions and the set of unlocked
ids. It never mutates game state: check_all() evaluates a snapshot and
unlocks every achievement whose condition holds for the first time.

Every unlock is persisted through the injected ProgressStore and announced
to listeners as ("unlock", achievement_id). Presentation of the
notification is left entirely to the listener.

A failed save does not roll back the in-memory unlock; the failure is
logged and kept in ``last_save`` until the next write succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from story_rpg.conditions import evaluate
from story_rpg.models import Achievement, AchievementStats, GameState, SaveOutcome
from story_rpg.storage import ProgressStore

logger = logging.getLogger(__name__)

Listener = Callable[[str, str], None]


class AchievementEngine:
    def __init__(self, store: ProgressStore) -> None:
        self._store = store
        self._definitions: list[Achievement] = []
        self._unlocked: set[str] = set()
        self._listeners: list[Listener] = []
        self.last_save: SaveOutcome | None = None

    def initialize(self, definitions: Iterable[Achievement]) -> None:
        """Set the definitions and restore previously unlocked ids."""
        self._definitions = list(definitions)
        saved = self._store.load_achievements()
        if saved and saved.get("unlocked"):
            self._unlocked = set(saved["unlocked"])
        logger.debug(
            "achievements initialized total=%d unlocked=%d",
            len(self._definitions), len(self._unlocked),
        )

    @property
    def definitions(self) -> list[Achievement]:
        return list(self._definitions)

    @property
    def unlocked(self) -> frozenset[str]:
        return frozenset(self._unlocked)

    def get(self, achievement_id: str) -> Achievement | None:
        return next((a for a in self._definitions if a.id == achievement_id), None)

    def is_unlocked(self, achievement_id: str) -> bool:
        return achievement_id in self._unlocked

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def check_all(self, state: GameState) -> list[Achievement]:
        """Unlock and return every achievement newly satisfied by ``state``."""
        snapshot = state.snapshot()
        new_unlocks: list[Achievement] = []
        for achievement in self._definitions:
            if achievement.id in self._unlocked:
                continue
            if evaluate(achievement.condition, snapshot):
                self.unlock(achievement.id)
                new_unlocks.append(achievement)
        if new_unlocks:
            logger.info("unlocked achievements: %s", [a.id for a in new_unlocks])
        return new_unlocks

    def unlock(self, achievement_id: str) -> bool:
        """Unlock one achievement. Returns False if it was already unlocked."""
        if achievement_id in self._unlocked:
            return False

        self._unlocked.add(achievement_id)
        self._persist()
        self._notify("unlock", achievement_id)
        return True

    def reset(self) -> SaveOutcome:
        self._unlocked.clear()
        return self._persist()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self) -> AchievementStats:
        total = len(self._definitions)
        unlocked = len(self._unlocked)
        percentage = round(unlocked / total * 100) if total else 0
        return AchievementStats(total=total, unlocked=unlocked, percentage=percentage)

    def overview(self) -> list[tuple[Achievement, bool]]:
        """Every definition paired with its unlock status, in definition order."""
        return [(a, a.id in self._unlocked) for a in self._definitions]

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, achievement_id: str) -> None:
        for listener in list(self._listeners):
            listener(event, achievement_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> SaveOutcome:
        order = {a.id: i for i, a in enumerate(self._definitions)}
        ids = sorted(self._unlocked, key=lambda i: (order.get(i, len(order)), i))
        outcome = self._store.save_achievements({"unlocked": ids})
        if not outcome.success:
            logger.warning("Unlocked achievements not persisted: %s", outcome.message)
        self.last_save = outcome
        return outcome
