from __future__ import annotations

import pytest

from mealbot.core.errors import ValidationError
from mealbot.core.parsing import (
    clean_name,
    normalize_name,
    parse_new_command,
    parse_plan_size,
    parse_rating,
    parse_tags_and_links,
    split_command,
)


def test_split_command_strips_bot_mention() -> None:
    assert split_command("/new@mealbot Pasta, 4") == ("new", "Pasta, 4")
    assert split_command("/LIST") == ("list", "")
    assert split_command("hello /new") is None


def test_names_are_keyed_case_and_space_insensitive() -> None:
    assert normalize_name("  Pasta   Carbonara ") == normalize_name("pasta carbonara")
    assert clean_name("  Pasta   Carbonara ") == "Pasta Carbonara"
    with pytest.raises(ValidationError):
        clean_name("   ")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("4", 4.0), ("3,5", 3.5), ("⭐⭐", 2.0), ("9", 5.0), ("-2", 0.0)],
)
def test_parse_rating_clamps(raw: str, expected: float) -> None:
    assert parse_rating(raw) == expected


def test_parse_rating_rejects_words() -> None:
    with pytest.raises(ValidationError):
        parse_rating("great")


def test_tags_and_links_are_split() -> None:
    tags, links = parse_tags_and_links("spicy, #quick https://example.com/r Spicy")
    assert tags == ["spicy", "quick"]
    assert links == ["https://example.com/r"]


def test_new_command_full_line() -> None:
    args = parse_new_command("Pasta, 4, spicy quick, https://a.example https://b.example")
    assert args.name == "Pasta"
    assert args.rating == 4.0
    assert args.tags == ["spicy", "quick"]
    assert args.references == ["https://a.example", "https://b.example"]
    assert args.complete


def test_new_command_bad_rating_is_incomplete() -> None:
    args = parse_new_command("Pasta, great")
    assert args.rating is None
    assert args.rating_invalid
    assert not args.complete


def test_plan_size() -> None:
    assert parse_plan_size("", default=7) == 7
    assert parse_plan_size("3", default=7) == 3
    with pytest.raises(ValidationError):
        parse_plan_size("many", default=7)
    with pytest.raises(ValidationError):
        parse_plan_size("0", default=7)
