from __future__ import annotations


class MealBotError(Exception):
    """Base class for errors that are reported back to the chat."""


class ValidationError(MealBotError):
    """Malformed input for the current step. Recovered by re-prompting."""


class NotFoundError(MealBotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Meal not found: {name}")
        self.name = name


class ConflictError(MealBotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Meal already exists: {name}")
        self.name = name


class NotAuthorizedError(MealBotError):
    """Mutating command issued by a non-operator in a group chat."""


class TransportError(MealBotError):
    """A best-effort chat action failed (e.g. missing delete permission)."""
