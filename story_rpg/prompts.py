"""Handlebars prompt rendering for story passages and choice lists.

Prompt text is deterministic: the same story, history and choice always
render the same prompt. Optional story fields that are absent or empty are
skipped entirely, never rendered as empty headings or labels.

Values are inserted with triple-stash ({{{x}}}) so story text is passed to
the model without HTML escaping.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from story_rpg.models import Character, StoryDefinition

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


SECTION_TEMPLATE = "## {{{title}}}\n{{{body}}}\n\n"

CHARACTER_TEMPLATE = "### {{{name}}}\n{{{fields}}}\n"

# (attribute, label) pairs, in the order they appear under a character
CHARACTER_FIELDS = (
    ("personality", "性格"),
    ("background", "背景"),
    ("goals", "目標"),
)

WRITING_GUIDE = (
    "## 寫作指引\n"
    "- 以第二人稱視角描述（使用「你」稱呼玩家）\n"
    "- 保持敘述生動且具有畫面感\n"
    "- 根據玩家的選擇推進劇情\n"
    "- 保持角色性格一致性\n"
    "- 每次回應約 100-200 字\n"
)

TONE_TEMPLATE = "- 整體基調: {{{tone}}}\n"

OPENING_PROMPT = "開始這個故事，描述開場場景。"

CONTINUATION_TEMPLATE = "玩家選擇: {{{choice}}}\n\n請根據這個選擇繼續故事。"

CHOICES_TEMPLATE = (
    "根據以下故事內容，生成 {{count}} 個合理的選項。\n"
    "\n"
    "故事內容：\n"
    "{{{story}}}\n"
    "\n"
    "請只輸出選項，每個選項一行，格式如下：\n"
    "{{{slots}}}"
    "\n"
    "選項應該：\n"
    "- 具體且可執行\n"
    "- 符合角色性格\n"
    "- 推進劇情發展\n"
    "- 給予玩家有意義的選擇"
)


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def _section(title: str, body: str) -> str:
    return render_prompt(SECTION_TEMPLATE, {"title": title, "body": body})


def _character_block(character: Character) -> str:
    fields = ""
    for attr, label in CHARACTER_FIELDS:
        value = getattr(character, attr)
        if value:
            fields += f"{label}: {value}\n"
    return render_prompt(
        CHARACTER_TEMPLATE, {"name": character.name, "fields": fields}
    )


def build_system_prompt(story: StoryDefinition, current_context: str = "") -> str:
    """Assemble the system prompt section by section.

    Sections appear in a fixed order: world, characters, plot, current
    context, writing guide, tone. Headed sections before the writing guide
    end with a blank line.
    """
    parts: list[str] = []
    if story.world_setting:
        parts.append(_section("世界設定", story.world_setting))
    if story.characters:
        parts.append("## 角色設定\n")
        parts.extend(_character_block(c) for c in story.characters)
    if story.plot_guidelines:
        parts.append(_section("劇情指引", story.plot_guidelines))
    if current_context:
        parts.append(_section("當前情境", current_context))
    parts.append(WRITING_GUIDE)
    if story.tone:
        parts.append(render_prompt(TONE_TEMPLATE, {"tone": story.tone}))
    return "".join(parts)


def build_continuation_prompt(history: Sequence[str], user_choice: str) -> str:
    if not history:
        return OPENING_PROMPT
    return render_prompt(CONTINUATION_TEMPLATE, {"choice": user_choice})


def build_story_prompt(
    story: StoryDefinition, history: Sequence[str], user_choice: str
) -> str:
    """The full passage prompt: system prompt, blank line, user instruction."""
    system = build_system_prompt(story, "\n".join(history))
    return f"{system}\n\n{build_continuation_prompt(history, user_choice)}"


def build_choices_prompt(current_story: str, count: int = 3) -> str:
    slots = "".join(f"{n}. [選項內容]\n" for n in range(1, count + 1))
    context = {"count": count, "story": current_story, "slots": slots}
    return render_prompt(CHOICES_TEMPLATE, context)
