from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mealbot.core.events import Button, Buttons, rows
from mealbot.core.text import t


@dataclass(frozen=True)
class Callback:
    flow: str
    kind: str
    value: str


def cb(flow: str, kind: str, value: str = "") -> str:
    return f"{flow}:{kind}:{value}"


def parse_cb(data: str) -> Callback | None:
    # Format: flow:kind:value
    parts = (data or "").split(":", 2)
    if len(parts) != 3:
        return None
    return Callback(flow=parts[0], kind=parts[1], value=parts[2])


def nav_row(*, flow: str, show_skip: bool = False) -> list[Button]:
    row: list[Button] = []
    if show_skip:
        row.append(Button(t("common.skip"), cb(flow, "nav", "skip")))
    row.append(Button(t("common.cancel"), cb(flow, "nav", "cancel")))
    return row


def meal_buttons(meal: Any) -> Buttons:
    return rows(
        [
            Button(t("meal.rate_poll_btn"), cb("meal", "poll", meal.id)),
            Button(t("meal.remove_btn"), cb("meal", "remove", meal.id)),
        ]
    )


def rating_row(*, flow: str, selected: int = 0) -> list[Button]:
    return [
        Button("⭐" if r <= selected else "⚫", cb(flow, "rate", str(r)))
        for r in range(1, 6)
    ]
