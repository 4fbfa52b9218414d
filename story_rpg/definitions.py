"""Story and achievement definition files.

    story.json        : a StoryDefinition object
    achievements.json : {"achievements": [Achievement, ...]}

Where these files live is up to the caller.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from story_rpg.models import Achievement, StoryDefinition

logger = logging.getLogger(__name__)


def load_story(path: Path) -> StoryDefinition:
    """Read a story definition, falling back to the built-in default story."""
    try:
        return StoryDefinition.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("Cannot load story definition %s, using default: %s", path, e)
        return StoryDefinition.default()


def parse_achievements(data: Any) -> list[Achievement]:
    """Decode the achievements document. Invalid entries are skipped."""
    if not isinstance(data, dict):
        logger.warning("Achievement definitions must be a JSON object")
        return []
    achievements: list[Achievement] = []
    seen: set[str] = set()
    for raw in data.get("achievements") or []:
        try:
            achievement = Achievement.model_validate(raw)
        except ValidationError as e:
            logger.warning("Skipping invalid achievement %r: %s", raw, e)
            continue
        if achievement.id in seen:
            logger.warning("Skipping duplicate achievement id %r", achievement.id)
            continue
        seen.add(achievement.id)
        achievements.append(achievement)
    return achievements


def load_achievements(path: Path) -> list[Achievement]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Cannot load achievement definitions %s: %s", path, e)
        return []
    return parse_achievements(data)
