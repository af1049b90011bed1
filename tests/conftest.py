from __future__ import annotations

import random

import pytest

from mealbot.bot.deps import Deps, build_deps
from mealbot.bot.router import EventRouter
from mealbot.core.config import Settings
from mealbot.core.events import Action, AnswerButton, EditMessage, EventKind, OpenPoll, Payload, ScopeKey, SendPrompt
from mealbot.db.session import dispose_db, init_db


@pytest.fixture(autouse=True)
def db(tmp_path):
    init_db(None, str(tmp_path / "test.db"))
    yield
    dispose_db()


@pytest.fixture
def settings() -> Settings:
    return Settings(bot_token="test-token", operator_ids=frozenset({1}), admin_password="secret")


@pytest.fixture
def deps(settings: Settings) -> Deps:
    return build_deps(settings, rng=random.Random(7))


@pytest.fixture
def router(deps: Deps) -> EventRouter:
    return EventRouter(deps)


class FakeChat:
    """
    Stands in for the executor: numbers outgoing messages and records the
    tracking the real executor would do.
    """

    def __init__(self, router: EventRouter) -> None:
        self.router = router
        self.deps = router.d
        self._next_id = 1000
        self._next_user_msg = 1

    def send(
        self,
        kind: EventKind,
        *,
        text: str = "",
        data: str = "",
        photo: str | None = None,
        user: int = 1,
        chat: int = 10,
        group: bool = False,
    ) -> list[Action]:
        self._next_user_msg += 1
        payload = Payload(
            chat_id=chat,
            user_id=user,
            message_id=self._next_user_msg,
            text=text,
            data=data,
            photo_file_id=photo,
            is_group=group,
        )
        return self.deliver(self.router.handle(ScopeKey(chat, user), kind, payload))

    def vote(self, tg_poll_id: str, user: int, *options: int, chat: int = 10) -> list[Action]:
        payload = Payload(chat_id=chat, user_id=user, poll_id=tg_poll_id, option_ids=options, is_group=True)
        return self.deliver(self.router.handle(ScopeKey(chat), "poll-vote", payload))

    def deliver(self, actions: list[Action]) -> list[Action]:
        for action in actions:
            if isinstance(action, SendPrompt):
                self._next_id += 1
                if action.session_id and action.role and self.deps.registry.find(action.session_id):
                    self.deps.tracker.track(
                        action.session_id,
                        chat_id=action.chat_id,
                        message_id=self._next_id,
                        role=action.role,
                        has_media=bool(action.photo_file_id),
                    )
            elif isinstance(action, OpenPoll):
                self._next_id += 1
                if action.poll_id is not None:
                    self.deps.polls.attach(action.poll_id, tg_poll_id=f"tg-{action.poll_id}", message_id=self._next_id)
                if action.role and self.deps.registry.find(action.session_id):
                    self.deps.tracker.track(
                        action.session_id,
                        chat_id=action.chat_id,
                        message_id=self._next_id,
                        role=action.role,
                    )
        return actions

    @staticmethod
    def texts(actions: list[Action]) -> list[str]:
        return [a.text for a in actions if isinstance(a, (SendPrompt, EditMessage, AnswerButton))]

    @staticmethod
    def button_data(action: SendPrompt | EditMessage) -> list[str]:
        return [b.data for row in action.buttons for b in row]


@pytest.fixture
def chat(router: EventRouter) -> FakeChat:
    return FakeChat(router)
