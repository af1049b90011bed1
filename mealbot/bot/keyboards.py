from __future__ import annotations

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup

from mealbot.core.events import Buttons


def inline_markup(buttons: Buttons) -> InlineKeyboardMarkup | None:
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.text, callback_data=b.data) for b in row] for row in buttons]
    )


def bot_commands() -> list[BotCommand]:
    return [
        BotCommand("newmeal", "Save a meal step by step"),
        BotCommand("new", "Save a complete meal: name, rating, tags, links"),
        BotCommand("list", "List all meals"),
        BotCommand("get", "Show a meal"),
        BotCommand("search", "Find meals by name"),
        BotCommand("rate", "Rate a meal with a group poll"),
        BotCommand("plan", "Plan meals for the next days"),
        BotCommand("remove", "Remove a meal"),
        BotCommand("cancel", "Cancel what you are doing"),
        BotCommand("help", "Show help"),
    ]
