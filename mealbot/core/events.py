from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

EventKind = Literal["command", "text", "button", "poll-vote", "photo"]
Role = Literal["prompt", "keyboard", "echo", "vote"]


@dataclass(frozen=True)
class ScopeKey:
    """
    Isolates conversation state.

    Creation and planning flows are scoped to (chat, user); group rating polls
    are scoped to the chat alone (`user_id is None`).
    """

    chat_id: int
    user_id: int | None = None

    @property
    def key(self) -> str:
        if self.user_id is None:
            return str(self.chat_id)
        return f"{self.chat_id}:{self.user_id}"

    def chat_scope(self) -> ScopeKey:
        return ScopeKey(self.chat_id)

    @classmethod
    def parse(cls, raw: str) -> ScopeKey:
        chat, _, user = raw.partition(":")
        return cls(int(chat), int(user) if user else None)


@dataclass(frozen=True)
class Payload:
    chat_id: int
    user_id: int
    message_id: int | None = None
    # Command line, plain text, or a photo caption.
    text: str = ""
    # Callback data for button presses.
    data: str = ""
    photo_file_id: str | None = None
    is_group: bool = False
    # Telegram poll id and chosen option indexes for poll answers.
    poll_id: str | None = None
    option_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Button:
    text: str
    data: str


Buttons = tuple[tuple[Button, ...], ...]


def rows(*rows_: list[Button] | tuple[Button, ...]) -> Buttons:
    return tuple(tuple(r) for r in rows_ if r)


@dataclass(frozen=True)
class SendPrompt:
    chat_id: int
    text: str
    buttons: Buttons = ()
    photo_file_id: str | None = None
    # When both are set the sent message is tracked for the session.
    session_id: str | None = None
    role: Role | None = None
    reply_to: int | None = None


@dataclass(frozen=True)
class EditMessage:
    chat_id: int
    message_id: int
    text: str
    buttons: Buttons = ()
    has_media: bool = False


@dataclass(frozen=True)
class DeleteMessage:
    chat_id: int
    message_id: int


@dataclass(frozen=True)
class OpenPoll:
    """
    Send a native poll.

    Rating polls carry the aggregator `poll_id` and are attached to it once
    sent. Advisory polls have no `poll_id` and are tracked under `role`.
    """

    chat_id: int
    poll_id: str | None
    session_id: str
    question: str
    options: tuple[str, ...]
    buttons: Buttons = ()
    reply_to: int | None = None
    role: Role | None = None
    multiple_answers: bool = False


@dataclass(frozen=True)
class ClosePoll:
    chat_id: int
    message_id: int


@dataclass(frozen=True)
class AnswerButton:
    """Short notice shown to whoever pressed the button (callback query answer)."""

    text: str
    alert: bool = False


Action = Union[SendPrompt, EditMessage, DeleteMessage, OpenPoll, ClosePoll, AnswerButton]


@dataclass
class Outbox:
    """Actions produced while handling one event, in emission order."""

    actions: list[Action] = field(default_factory=list)

    def add(self, *actions: Action) -> None:
        self.actions.extend(actions)

    def extend(self, actions: list[Action]) -> None:
        self.actions.extend(actions)

    def say(self, chat_id: int, text: str, *, buttons: Buttons = ()) -> None:
        self.actions.append(SendPrompt(chat_id=chat_id, text=text, buttons=buttons))
