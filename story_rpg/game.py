"""Game bootstrap: wire settings, storage, model and definitions together.

    settings   ← load_settings (defaults, environment, stored overrides)
    store      ← JsonFileStore({data_dir}/progress)
    model      ← OllamaClient.from_settings(settings)
    story      ← {data_dir}/story.json (default story when unreadable)
    achievements ← {data_dir}/achievements.json, unlocked ids from the store
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from story_rpg.achievements import AchievementEngine
from story_rpg.config import load_settings
from story_rpg.definitions import load_achievements, load_story
from story_rpg.engine.turn import NarrativeTurnEngine
from story_rpg.llm import OllamaClient
from story_rpg.storage import JsonFileStore

logger = logging.getLogger(__name__)

STORY_FILE = "story.json"
ACHIEVEMENTS_FILE = "achievements.json"
PROGRESS_DIR = "progress"


def open_game(
    data_dir: Path | None = None,
    *,
    env_file: Path | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> NarrativeTurnEngine:
    """Build a ready-to-play engine from the data directory.

    ``data_dir`` overrides the directory from the environment. Definition
    files are read from it; saves, settings and unlocked achievements live in
    its ``progress`` subdirectory.
    """
    base = Path(data_dir) if data_dir is not None else load_settings(env_file=env_file).data_dir
    store = JsonFileStore(base / PROGRESS_DIR)
    settings = load_settings(store, env_file=env_file)

    model = OllamaClient.from_settings(settings, transport=transport)
    story = load_story(base / STORY_FILE)
    achievements = AchievementEngine(store)
    achievements.initialize(load_achievements(base / ACHIEVEMENTS_FILE))

    logger.info(
        "game ready: data=%s model=%s url=%s achievements=%d",
        base, settings.model_name, settings.ollama_url, len(achievements.definitions),
    )
    return NarrativeTurnEngine(story, model, achievements, store, settings=settings)
