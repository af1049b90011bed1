from __future__ import annotations

import random
from dataclasses import dataclass

from mealbot.core.config import Settings
from mealbot.core.events import Outbox, Payload, SendPrompt
from mealbot.core.state import Session, SessionRegistry
from mealbot.core.tracker import MessageTracker
from mealbot.services.meals import MealStore
from mealbot.services.operators import OperatorWhitelist
from mealbot.services.planner import Planner
from mealbot.services.polls import PollAggregator


@dataclass
class Deps:
    settings: Settings
    store: MealStore
    tracker: MessageTracker
    registry: SessionRegistry
    polls: PollAggregator
    planner: Planner
    operators: OperatorWhitelist

    def prompt(self, session: Session, out: Outbox, prompt: SendPrompt) -> None:
        """Replace the session's current prompt with `prompt`."""
        out.extend(self.tracker.supersede(session.id, "prompt", prompt))

    def echo(self, session: Session, payload: Payload, out: Outbox) -> None:
        """In groups, remember the user's own message so it gets cleaned up with the flow."""
        if payload.is_group and payload.message_id is not None:
            out.extend(
                self.tracker.track(
                    session.id,
                    chat_id=payload.chat_id,
                    message_id=payload.message_id,
                    role="echo",
                )
            )


def build_deps(settings: Settings, *, rng: random.Random | None = None) -> Deps:
    store = MealStore()
    tracker = MessageTracker()
    registry = SessionRegistry(tracker, ttl_minutes=settings.session_ttl_minutes)
    polls = PollAggregator(store, registry, default_rating=settings.default_rating)
    planner = Planner(default_rating=settings.default_rating, floor=settings.rating_floor, rng=rng)
    operators = OperatorWhitelist(static_ids=settings.operator_ids, admin_password=settings.admin_password)
    return Deps(
        settings=settings,
        store=store,
        tracker=tracker,
        registry=registry,
        polls=polls,
        planner=planner,
        operators=operators,
    )
