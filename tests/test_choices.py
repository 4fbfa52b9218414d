"""Tests for story_rpg.choices.parse_choices."""

import pytest

from story_rpg.choices import parse_choices


def test_numbered_lines_with_blank_line():
    raw = "1. Go north\n2. Go south\n\n3. Wait"
    assert parse_choices(raw, 3) == ["Go north", "Go south", "Wait"]


def test_truncates_to_max_count():
    raw = "1. A\n2. B\n3. C\n4. D"
    assert parse_choices(raw, 2) == ["A", "B"]


def test_no_numbered_lines_yields_empty():
    raw = "Here are some ideas for you.\nYou could go anywhere."
    assert parse_choices(raw, 3) == []


def test_empty_text_yields_empty():
    assert parse_choices("", 3) == []


def test_bullet_markers():
    raw = "- Climb the wall\n* Call for help\n"
    assert parse_choices(raw, 3) == ["Climb the wall", "Call for help"]


def test_marker_without_space():
    assert parse_choices("1.Open the chest", 3) == ["Open the chest"]


def test_prose_lines_are_skipped_and_order_kept():
    raw = (
        "Sure! Here are your options:\n"
        "1. Follow the stranger\n"
        "This one is risky.\n"
        "2. Stay at the inn\n"
    )
    assert parse_choices(raw, 3) == ["Follow the stranger", "Stay at the inn"]


def test_marker_only_lines_are_discarded():
    raw = "1.\n2.   \n---\n3. Sleep"
    assert parse_choices(raw, 3) == ["Sleep"]


def test_indented_and_padded_lines_trimmed():
    raw = "   1.   Light a torch   \r\n  2. Listen\r\n"
    assert parse_choices(raw, 3) == ["Light a torch", "Listen"]


def test_chinese_options():
    raw = "1. 繼續前進\n2. 環顧四周\n3. 與人交談"
    assert parse_choices(raw, 3) == ["繼續前進", "環顧四周", "與人交談"]


@pytest.mark.parametrize("max_count", [0, -1])
def test_non_positive_max_count_rejected(max_count):
    with pytest.raises(ValueError):
        parse_choices("1. A", max_count)
