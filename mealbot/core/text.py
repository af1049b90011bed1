from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from mealbot.core.parsing import MAX_RATING


STRINGS: dict[str, str] = {
    # Common / nav
    "common.back": "Back",
    "common.skip": "Skip",
    "common.cancel": "Cancel",
    "common.save": "Save",
    "common.ok": "OK",
    "common.exit": "Exit",
    "common.cancelled": "Cancelled.",
    "common.nothing_to_cancel": "Nothing to cancel.",
    "common.expired": "These buttons are outdated. Please run the command again.",
    "common.not_authorized": "Only operators can do that in group chats.",
    "common.unknown_command": "Unknown command. See /help.",
    # Start / help
    "start.text": (
        "Meal Bot\n\n"
        "Save the meals you cook, rate them together and let me plan what to eat next.\n"
        "See /help for all commands."
    ),
    "help.text": (
        "These commands are supported:\n"
        "/newmeal [name] - save a meal step by step\n"
        "/new <name>, <rating>, <tags>, <links> - save a complete meal\n"
        "/list - list all meals\n"
        "/get <name> - show a meal\n"
        "/search <text> - find meals by name\n"
        "/remove <name> - remove a meal\n"
        "/rate <name> - rate a meal with a group poll\n"
        "/plan [days] - plan meals for the given number of days\n"
        "/photo <name> - send as a photo caption to replace a meal's photo\n"
        "/cancel - cancel what you are doing"
    ),
    # Operators
    "auth.usage": "Usage: /auth <password>",
    "auth.ok": "You are now an operator.",
    "auth.bad": "Wrong password.",
    # Meals
    "meal.not_found": "{name}\n\nMeal not found!",
    "meal.exists": "A meal called {name} already exists.",
    "meal.saved": "{card}\n\nSaved!",
    "meal.removed": "{card}\n\nRemoved!",
    "meal.photo_saved": "{card}\n\nSaved new photo!",
    "meal.rate_poll_btn": "Rate with poll",
    "meal.remove_btn": "Remove",
    "meal.usage_get": "Usage: /get <name>",
    "meal.usage_remove": "Usage: /remove <name>",
    "meal.usage_photo": "Send a photo with the caption /photo <name>.",
    "list.title": "List:",
    "list.empty": "No meals saved!\n(save new meals with /new <meal name>)",
    "search.usage": "Usage: /search <text>",
    "search.title": "Found:",
    "search.empty": "No meals match {query!r}.",
    # Creation flow
    "new.name": "New meal. What is it called?",
    "new.name_retry": "{error}\nWhat is the meal called?",
    "new.name_conflict": "{name} already exists. Send a different name or overwrite it.",
    "new.overwrite_btn": "Overwrite",
    "new.rating": "{name}\n\nHow did it taste?",
    "new.rating_retry": "{name}\n\nPlease rate with the stars or send a number from 0 to {max}.",
    "new.tags": "{card}\n\nSend tags and links (space separated), or skip.",
    "new.tags_retry": "{card}\n\nPlease send tags and links as text, or skip.",
    "new.photo": "{card}\n\nSend a photo, or skip.",
    "new.photo_retry": "{card}\n\nThat is not a photo. Send a photo, or skip.",
    "new.confirm": "{card}\n\nSave this meal?",
    "new.confirm_retry": "{card}\n\nUse the buttons below to save or cancel.",
    "new.confirm_conflict": "{card}\n\nA meal with this name already exists. Overwrite it?",
    # Rating poll
    "poll.question": "Rate meal: {name}",
    "poll.stop_btn": "Stop",
    "poll.cancel_btn": "Cancel vote",
    "poll.voting": "{card}\n\nVoting...",
    "poll.closed": "{card}\n\nRated by {votes} vote(s): {rating:.1f}",
    "poll.closed_no_votes": "{card}\n\nNobody voted, rating set to {rating:.1f}",
    "poll.cancelled": "{card}\n\nPoll cancelled.",
    "poll.usage": "Usage: /rate <name>",
    # Planning
    "plan.title": "Plan for {count} day(s):\n(Click to see details)",
    "plan.truncated": "Only {available} meal(s) saved, planning all of them.",
    "plan.nothing": "Nothing to plan: no meals saved yet.\n(save new meals with /new <meal name>)",
    "plan.reroll_btn": "Reroll",
    "plan.vote_btn": "Vote",
    "plan.clear_votes_btn": "Clear votes",
    "plan.vote_question": "Which of these should we cook?",
    "plan.vote_too_few": "Need at least two meals to vote on.",
    "plan.final": "Plan:\n{lines}",
}


def t(key: str, **kwargs: Any) -> str:
    template = STRINGS.get(key, key)
    if kwargs:
        return template.format(**kwargs)
    return template


def stars(rating: float | None) -> str:
    if rating is None:
        return ""
    return "⭐" * int(round(max(0.0, min(rating, float(MAX_RATING)))))


def _tags_line(tags: Iterable[str]) -> str:
    tags = list(tags)
    if not tags:
        return ""
    return "| " + " | ".join(tags) + " |"


def card(
    name: str,
    *,
    rating: float | None = None,
    tags: Iterable[str] = (),
    references: Iterable[str] = (),
) -> str:
    parts = [name.upper()]
    if rating is not None:
        parts.append(stars(rating) or "-")
    tags_line = _tags_line(tags)
    if tags_line:
        parts.append("")
        parts.append(tags_line)
    refs = list(references)
    if refs:
        parts.append("")
        parts.extend(f"({r})" for r in refs)
    return "\n".join(parts)


def meal_card(meal: Any) -> str:
    """Render anything shaped like a Meal (ORM row or draft namespace)."""
    return card(
        meal.name,
        rating=meal.rating,
        tags=meal.tags or (),
        references=meal.references or (),
    )


def draft_card(draft: dict) -> str:
    return card(
        draft.get("name") or "?",
        rating=draft.get("rating"),
        tags=draft.get("tags") or (),
        references=draft.get("references") or (),
    )
