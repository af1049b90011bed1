from __future__ import annotations

import re
from dataclasses import dataclass, field

from mealbot.core.errors import ValidationError


MAX_RATING = 5
MAX_NAME_LEN = 64

_RE_COMMAND = re.compile(r"^/(?P<cmd>[A-Za-z0-9_]+)(?:@\S+)?(?:\s+(?P<args>.*))?$", re.S)
_RE_URL = re.compile(r"^https?://\S+$", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Key used for uniqueness: whitespace collapsed, case folded."""
    return " ".join((name or "").split()).casefold()


def clean_name(name: str) -> str:
    cleaned = " ".join((name or "").split())
    if not cleaned:
        raise ValidationError("Meal name must not be empty.")
    if len(cleaned) > MAX_NAME_LEN:
        raise ValidationError(f"Meal name must be at most {MAX_NAME_LEN} characters.")
    return cleaned


def split_command(text: str) -> tuple[str, str] | None:
    """
    `/new@mealbot Pasta, 4` -> ("new", "Pasta, 4").
    Returns None for text that is not a command.
    """
    m = _RE_COMMAND.match((text or "").strip())
    if not m:
        return None
    return m.group("cmd").lower(), (m.group("args") or "").strip()


def parse_rating(text: str) -> float:
    raw = (text or "").strip().replace(",", ".")
    if raw and set(raw) == {"⭐"}:
        return float(min(len(raw), MAX_RATING))
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"Rating has to be a number from 0 to {MAX_RATING}.") from None
    if value != value:  # NaN
        raise ValidationError(f"Rating has to be a number from 0 to {MAX_RATING}.")
    return max(0.0, min(value, float(MAX_RATING)))


def parse_tags_and_links(text: str) -> tuple[list[str], list[str]]:
    """
    Split free text into tags and references.
    Tokens are separated by whitespace or commas; http(s) URLs become references.
    """
    tags: list[str] = []
    links: list[str] = []
    seen: set[str] = set()
    for token in re.split(r"[\s,]+", text or ""):
        token = token.strip()
        if not token:
            continue
        if _RE_URL.match(token):
            if token not in links:
                links.append(token)
            continue
        token = token.lstrip("#")
        if token and token.casefold() not in seen:
            seen.add(token.casefold())
            tags.append(token)
    return tags, links


def merge_tags(existing: list[str], extra: list[str]) -> list[str]:
    out = list(existing)
    seen = {t.casefold() for t in out}
    for tag in extra:
        if tag.casefold() not in seen:
            seen.add(tag.casefold())
            out.append(tag)
    return out


@dataclass(frozen=True)
class NewMealArgs:
    name: str | None
    rating: float | None = None
    tags: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    # A rating segment was given but could not be parsed.
    rating_invalid: bool = False

    @property
    def complete(self) -> bool:
        return self.name is not None and self.rating is not None


def parse_new_command(args: str) -> NewMealArgs:
    """
    Parse `<name>[, rating][, tags][, links]`.

    Tags are whitespace separated; anything after the third comma is treated
    as links. URLs found among the tags are moved to the links as well.
    """
    parts = [p.strip() for p in (args or "").split(",")]
    name_raw = parts[0] if parts else ""
    name = " ".join(name_raw.split()) or None
    if name is not None:
        name = clean_name(name)

    rating: float | None = None
    rating_invalid = False
    if len(parts) > 1 and parts[1]:
        try:
            rating = parse_rating(parts[1])
        except ValidationError:
            rating_invalid = True

    tags: list[str] = []
    links: list[str] = []
    if len(parts) > 2:
        tags, links = parse_tags_and_links(parts[2])
    if len(parts) > 3:
        for token in re.split(r"[\s,]+", " ".join(parts[3:])):
            if token and token not in links:
                links.append(token)

    return NewMealArgs(
        name=name,
        rating=rating,
        tags=tags,
        references=links,
        rating_invalid=rating_invalid,
    )


def parse_plan_size(args: str, *, default: int) -> int:
    raw = (args or "").strip()
    if not raw:
        return default
    try:
        count = int(raw.split()[0])
    except ValueError:
        raise ValidationError("Plan size has to be a whole number, e.g. /plan 5.") from None
    if count <= 0:
        raise ValidationError("Plan size has to be at least 1.")
    return count
