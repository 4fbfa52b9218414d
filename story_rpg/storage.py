"""JSON file storage for game progress, settings and achievements.

The engine only depends on the ProgressStore protocol; JsonFileStore is the
bundled implementation. All state lives in flat JSON files under one
directory: no database, reads and writes go through plain helpers that
load and dump JSON.

Directory layout:

    {base}/
      save.json           ← {"timestamp": ..., "gameState": GameState}
      settings.json       ← stored settings overrides
      achievements.json   ← {"unlocked": [achievement ids]}

Writes report failure as SaveOutcome(success=False) instead of raising;
reads return None (or {} for settings) when a file is missing or corrupt.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from story_rpg.models import GameState, SaveInfo, SaveOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: the capability the engine and achievement engine rely on
# ---------------------------------------------------------------------------

class ProgressStore(Protocol):
    def load_achievements(self) -> dict[str, Any] | None: ...
    def save_achievements(self, data: dict[str, Any]) -> SaveOutcome: ...
    def load_game(self) -> GameState | None: ...
    def save_game(self, state: GameState) -> SaveOutcome: ...
    def load_settings(self) -> dict[str, Any]: ...
    def save_settings(self, settings: dict[str, Any]) -> SaveOutcome: ...
    def reset_all(self) -> SaveOutcome: ...


# ---------------------------------------------------------------------------
# JsonFileStore
# ---------------------------------------------------------------------------

class JsonFileStore:
    SAVE_FILE = "save.json"
    SETTINGS_FILE = "settings.json"
    ACHIEVEMENTS_FILE = "achievements.json"

    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, name: str) -> Path:
        return self._base / name

    def _read_json(self, name: str) -> Any:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            return None

    def _write_json(self, name: str, data: Any, ok_message: str = "") -> SaveOutcome:
        path = self._path(name)
        try:
            path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8"
            )
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write %s: %s", path, e)
            return SaveOutcome(success=False, message=f"儲存失敗: {e}")
        return SaveOutcome(success=True, message=ok_message)

    # ------------------------------------------------------------------
    # Game save
    # ------------------------------------------------------------------

    def save_game(self, state: GameState) -> SaveOutcome:
        data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "gameState": state.model_dump(by_alias=True),
        }
        return self._write_json(self.SAVE_FILE, data, "遊戲已儲存！")

    def load_game(self) -> GameState | None:
        data = self._read_json(self.SAVE_FILE)
        if not isinstance(data, dict) or "gameState" not in data:
            return None
        try:
            return GameState.model_validate(data["gameState"])
        except ValidationError as e:
            logger.error("Save file holds an invalid game state: %s", e)
            return None

    def has_save(self) -> bool:
        return self._path(self.SAVE_FILE).exists()

    def save_info(self) -> SaveInfo | None:
        data = self._read_json(self.SAVE_FILE)
        if not isinstance(data, dict):
            return None
        state = data.get("gameState") or {}
        return SaveInfo(
            timestamp=data.get("timestamp", ""),
            turn_count=state.get("turnCount", 0),
            choice_count=state.get("choiceCount", 0),
        )

    def delete_save(self) -> SaveOutcome:
        try:
            self._path(self.SAVE_FILE).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete save: %s", e)
            return SaveOutcome(success=False, message=f"刪除失敗: {e}")
        return SaveOutcome(success=True, message="存檔已刪除！")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def load_settings(self) -> dict[str, Any]:
        data = self._read_json(self.SETTINGS_FILE)
        return data if isinstance(data, dict) else {}

    def save_settings(self, settings: dict[str, Any]) -> SaveOutcome:
        return self._write_json(self.SETTINGS_FILE, settings)

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    def load_achievements(self) -> dict[str, Any] | None:
        data = self._read_json(self.ACHIEVEMENTS_FILE)
        return data if isinstance(data, dict) else None

    def save_achievements(self, data: dict[str, Any]) -> SaveOutcome:
        return self._write_json(self.ACHIEVEMENTS_FILE, data)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset_all(self) -> SaveOutcome:
        """Remove the save and achievement progress; settings are kept."""
        try:
            for name in (self.SAVE_FILE, self.ACHIEVEMENTS_FILE):
                self._path(name).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Reset failed: %s", e)
            return SaveOutcome(success=False, message=f"重置失敗: {e}")
        return SaveOutcome(success=True, message="所有資料已重置！")
