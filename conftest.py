from pathlib import Path

import pytest

from story_rpg.models import Character, Scene, StoryDefinition
from story_rpg.storage import JsonFileStore


@pytest.fixture
def store(tmp_path: Path) -> JsonFileStore:
    """A fresh JSON store under the test's tmp dir."""
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def story() -> StoryDefinition:
    return StoryDefinition(
        world_setting="A drowned kingdom where bells ring under the sea.",
        tone="melancholic",
        characters=[
            Character(name="Mira", personality="curious", goals="find the bell tower"),
            Character(name="Old Tam"),
        ],
        plot_guidelines="The player searches for the lost bell.",
        scenes=[
            Scene(id="harbor", image="img/harbor.png", keywords=["harbor", "dock"]),
            Scene(id="tower", image="img/tower.png", keywords=["bell tower"]),
        ],
    )
