"""Runtime settings (model connection, sampling options, turn behaviour).

Settings are resolved in layers, later layers winning:

    1. built-in defaults (the Settings field defaults)
    2. environment: OLLAMA_URL, OLLAMA_MODEL, STORY_RPG_DATA_DIR,
       read from a .env file when one is present
    3. values stored through the ProgressStore (the in-game settings)

Stored settings use the camelCase keys of the save format
(``ollamaUrl``, ``modelName``, ...).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from story_rpg.models import SaveOutcome
from story_rpg.storage import ProgressStore

logger = logging.getLogger(__name__)

_ENV_KEYS: dict[str, str] = {
    "OLLAMA_URL": "ollamaUrl",
    "OLLAMA_MODEL": "modelName",
    "STORY_RPG_DATA_DIR": "dataDir",
}


class Settings(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    ollama_url: str = "http://localhost:11434"
    model_name: str = "llama2"
    data_dir: Path = Path("data")

    # passage sampling
    temperature: float = 0.8
    top_p: float = 0.9
    top_k: int = 40
    max_tokens: int | None = None

    # choice sampling
    choice_temperature: float = 0.7
    choice_max_tokens: int | None = 200
    choice_count: int = 3

    streaming: bool = True
    stop_on_done: bool = False
    timeout: float = 120.0

    @field_validator("ollama_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("choice_count")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("choice_count must be at least 1")
        return value

    def story_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
        }
        if self.max_tokens is not None:
            options["max_tokens"] = self.max_tokens
        return options

    def choice_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"temperature": self.choice_temperature}
        if self.choice_max_tokens is not None:
            options["max_tokens"] = self.choice_max_tokens
        return options


def _env_overrides() -> dict[str, Any]:
    return {key: os.environ[var] for var, key in _ENV_KEYS.items() if os.getenv(var)}


def load_settings(
    store: ProgressStore | None = None, env_file: Path | None = None
) -> Settings:
    """Resolve settings from defaults, environment and the store."""
    load_dotenv(env_file)
    values: dict[str, Any] = _env_overrides()
    if store is not None:
        stored = store.load_settings()
        values.update(stored)
    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        logger.warning("Ignoring invalid stored settings: %s", e)
        return Settings.model_validate(_env_overrides())


def save_settings(store: ProgressStore, settings: Settings) -> SaveOutcome:
    """Persist the user-editable connection settings."""
    data = settings.model_dump(
        mode="json", by_alias=True, include={"ollama_url", "model_name"}
    )
    return store.save_settings(data)
