"""Narrative turn engine: runs one player turn end-to-end.

Turn flow:
  1. Reject the turn if another one is in flight (single-flight guard).
  2. Build the passage prompt from the story definition and history.
  3. Stream the passage from the model, forwarding tokens as "token" events
     (or fetch it in one call when streaming is disabled).
  4. Append the passage to history; record the player's choice.
  5. Switch scene on the first scene whose keyword appears in the passage.
  6. Run the achievement scan on the post-turn state.
  7. Ask the model for the next choices; fall back to fixed choices when
     that call fails or yields nothing parseable.

The engine always returns to IDLE and emits "loading_end", whichever way
the turn ends. A TransportError while generating the passage aborts the turn
without touching the game state and is reported as an "error" event; any
other exception propagates after cleanup.

Listeners receive (event, payload):

    loading_start / loading_end   None
    token                         str: one streamed token
    scene                         Scene, or None when a loaded game has no image
    choices                       list[str]
    error                         str: user-facing message
    busy                          str: the rejected choice
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from story_rpg.achievements import AchievementEngine
from story_rpg.choices import DEFAULT_CHOICES, parse_choices
from story_rpg.config import Settings, save_settings
from story_rpg.llm import StoryModel, TransportError
from story_rpg.models import (
    Achievement,
    ConnectionStatus,
    GameState,
    SaveOutcome,
    Scene,
    StoryDefinition,
)
from story_rpg.prompts import build_choices_prompt, build_story_prompt
from story_rpg.storage import ProgressStore

logger = logging.getLogger(__name__)

EventListener = Callable[[str, Any], None]

# Used when the choice request itself fails.
FALLBACK_CHOICES: tuple[str, ...] = ("繼續探索", "仔細觀察周圍", "尋找線索")

GENERATION_ERROR = "無法生成故事，請檢查 Ollama 連線"
BUSY_MESSAGE = "遊戲正在進行中，請稍候..."
NO_STORE_MESSAGE = "沒有可用的儲存空間"


class TurnPhase(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


class TurnResult(BaseModel):
    passage: str = ""
    choices: list[str] = Field(default_factory=list)
    unlocked: list[Achievement] = Field(default_factory=list)
    scene: Scene | None = None
    busy: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.busy and self.error is None


class NarrativeTurnEngine:
    def __init__(
        self,
        story: StoryDefinition,
        model: StoryModel,
        achievements: AchievementEngine,
        store: ProgressStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._story = story
        self._model = model
        self._achievements = achievements
        self._store = store
        self._settings = settings or Settings()
        self._state = GameState()
        self._phase = TurnPhase.IDLE
        self._choices: list[str] = []
        self._listeners: list[EventListener] = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def story(self) -> StoryDefinition:
        return self._story

    @property
    def achievements(self) -> AchievementEngine:
        return self._achievements

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._phase is TurnPhase.GENERATING

    @property
    def current_choices(self) -> list[str]:
        return list(self._choices)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners):
            listener(event, payload)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def start_turn(self, choice: str = "") -> TurnResult:
        """Run one turn for ``choice`` ("" for the opening passage)."""
        if self._phase is TurnPhase.GENERATING:
            logger.info("turn rejected, generation in progress: %r", choice)
            self._emit("busy", choice)
            return TurnResult(busy=True)

        self._phase = TurnPhase.GENERATING
        self._choices = []
        try:
            self._emit("loading_start")
            prompt = build_story_prompt(self._story, self._state.history, choice)
            try:
                passage = await self._generate_passage(prompt)
            except TransportError as e:
                logger.error("story generation failed: %s", e)
                self._emit("error", GENERATION_ERROR)
                return TurnResult(error=str(e))

            self._record_turn(choice, passage)
            scene = self._detect_scene(passage)
            unlocked = self._achievements.check_all(self._state)
            choices = await self.next_choices()
            logger.debug(
                "turn %d complete len=%d unlocked=%d",
                self._state.turn_count, len(passage), len(unlocked),
            )
            return TurnResult(
                passage=passage, choices=choices, unlocked=unlocked, scene=scene
            )
        finally:
            self._phase = TurnPhase.IDLE
            self._emit("loading_end")

    async def new_game(self) -> TurnResult:
        """Start over from a fresh state and generate the opening passage."""
        if self.is_busy:
            self._emit("busy", "")
            return TurnResult(busy=True)
        self._state = GameState(current_scene="start")
        self._choices = []
        return await self.start_turn("")

    async def _generate_passage(self, prompt: str) -> str:
        options = self._settings.story_options()
        if self._settings.streaming:
            return await self._model.generate_stream(
                prompt, self._on_token, options=options
            )
        return await self._model.generate(prompt, options=options)

    def _on_token(self, token: str) -> None:
        self._emit("token", token)

    def _record_turn(self, choice: str, passage: str) -> None:
        state = self._state
        state.current_story = passage
        state.history.append(passage)
        state.turn_count += 1
        if choice:
            state.choices.append(choice)
            state.choice_count += 1

    def _detect_scene(self, passage: str) -> Scene | None:
        """Switch to the first scene with a keyword in ``passage``."""
        for scene in self._story.scenes:
            if scene.matches(passage):
                self._state.current_scene = scene.id
                self._state.current_image = scene.image
                self._emit("scene", scene)
                return scene
        return None

    async def next_choices(self) -> list[str]:
        """Ask the model for the next choices for the current passage."""
        count = self._settings.choice_count
        prompt = build_choices_prompt(self._state.current_story, count)
        try:
            raw = await self._model.generate(
                prompt, options=self._settings.choice_options()
            )
        except TransportError as e:
            logger.warning("choice generation failed, using fallback: %s", e)
            choices = list(FALLBACK_CHOICES)
        else:
            choices = parse_choices(raw, count) or list(DEFAULT_CHOICES)
        self._choices = choices
        self._emit("choices", choices)
        return choices

    # ------------------------------------------------------------------
    # Save / load / reset
    # ------------------------------------------------------------------

    def save_game(self) -> SaveOutcome:
        if self._store is None:
            return SaveOutcome(success=False, message=NO_STORE_MESSAGE)
        outcome = self._store.save_game(self._state)
        if not outcome.success:
            logger.warning("save failed: %s", outcome.message)
        return outcome

    async def load_game(self) -> GameState | None:
        """Restore the saved state and regenerate choices. None if no save."""
        if self.is_busy:
            self._emit("busy", "")
            return None
        saved = self._store.load_game() if self._store is not None else None
        if saved is None:
            return None
        self._state = saved
        self._phase = TurnPhase.GENERATING
        try:
            self._emit("loading_start")
            self._emit("scene", self._restored_scene())
            await self.next_choices()
        finally:
            self._phase = TurnPhase.IDLE
            self._emit("loading_end")
        return self._state

    def _restored_scene(self) -> Scene | None:
        state = self._state
        if not state.current_image:
            return None
        for scene in self._story.scenes:
            if scene.id == state.current_scene and scene.image == state.current_image:
                return scene
        return Scene(id=state.current_scene or "", image=state.current_image)

    def reset_game(self) -> SaveOutcome:
        """Wipe saved progress and achievements and start from an empty state."""
        if self.is_busy:
            self._emit("busy", "")
            return SaveOutcome(success=False, message=BUSY_MESSAGE)
        if self._store is not None:
            outcome = self._store.reset_all()
        else:
            outcome = SaveOutcome(success=False, message=NO_STORE_MESSAGE)
        self._achievements.reset()
        self._state = GameState()
        self._choices = []
        return outcome

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def apply_settings(self, settings: Settings) -> SaveOutcome:
        """Use ``settings`` from now on and point the model at its server.

        Only the server URL and model name are pushed to a live model; the
        timeout and stream options take effect for models built afterwards.
        """
        self._settings = settings
        self._model.configure(settings.ollama_url, settings.model_name)
        logger.info(
            "settings updated: url=%s model=%s", settings.ollama_url, settings.model_name
        )
        if self._store is None:
            return SaveOutcome(success=False, message=NO_STORE_MESSAGE)
        return save_settings(self._store, settings)

    async def check_connection(self) -> ConnectionStatus:
        return await self._model.check_connection()
