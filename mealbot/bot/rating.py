from __future__ import annotations

import logging
from datetime import timedelta

from mealbot.bot.deps import Deps
from mealbot.bot.flow_common import cb
from mealbot.core.events import Button, OpenPoll, Outbox, Payload, ScopeKey, rows
from mealbot.core.parsing import MAX_RATING
from mealbot.core.state import RATING_POLL, Session
from mealbot.core.text import card, meal_card, t
from mealbot.services.polls import PollOutcome


logger = logging.getLogger(__name__)

POLL_FLOW = "poll"

# Sessions outlive their poll a little so the deadline always closes it first.
_SESSION_MARGIN = timedelta(minutes=1)


def poll_options() -> tuple[str, ...]:
    return tuple("⭐" * n for n in range(1, MAX_RATING + 1))


class RatingFlow:
    """Group rating of one meal through a native Telegram poll."""

    def __init__(self, deps: Deps) -> None:
        self.d = deps

    def start(self, scope: ScopeKey, payload: Payload, out: Outbox, meal_name: str) -> Session:
        meal = self.d.store.require(meal_name)
        settings = self.d.settings
        scope = scope.chat_scope()
        session = self.d.registry.begin(
            scope,
            RATING_POLL,
            draft={"meal_name": meal.name},
            ttl=timedelta(seconds=settings.poll_duration_s) + _SESSION_MARGIN,
            out=out,
        )
        self.d.echo(session, payload, out)
        poll = self.d.polls.open(
            meal.name,
            scope,
            settings.poll_duration_s,
            session_id=session.id,
            quorum=settings.poll_quorum,
        )
        out.add(
            OpenPoll(
                chat_id=scope.chat_id,
                poll_id=poll.id,
                session_id=session.id,
                question=t("poll.question", name=meal.name.upper()),
                options=poll_options(),
                buttons=rows(
                    [
                        Button(t("poll.stop_btn"), cb(POLL_FLOW, "stop", poll.id)),
                        Button(t("poll.cancel_btn"), cb(POLL_FLOW, "cancel", poll.id)),
                    ]
                ),
            )
        )
        return session

    def vote(self, payload: Payload, out: Outbox) -> None:
        poll = self.d.polls.find_by_tg_id(payload.poll_id or "")
        if poll is None:
            logger.debug("Vote for unknown poll %s", payload.poll_id)
            return
        # An empty answer means the voter retracted their vote.
        value = payload.option_ids[0] + 1 if payload.option_ids else None
        if self.d.polls.record_vote(poll.id, payload.user_id, value):
            logger.info("Quorum reached for poll %s", poll.id)
            self.finish(poll.id, out)

    def finish(self, poll_id: str, out: Outbox) -> PollOutcome | None:
        outcome = self.d.polls.close(poll_id, out=out)
        if outcome is None:
            return None
        meal = self.d.store.get(outcome.meal_name)
        if meal is None or outcome.rating is None:
            out.say(outcome.chat_id, t("meal.not_found", name=outcome.meal_name.upper()))
            return outcome
        if outcome.votes:
            text = t("poll.closed", card=meal_card(meal), votes=outcome.votes, rating=outcome.rating)
        else:
            text = t("poll.closed_no_votes", card=meal_card(meal), rating=outcome.rating)
        out.say(outcome.chat_id, text)
        return outcome

    def cancel(self, poll_id: str, out: Outbox) -> PollOutcome | None:
        outcome = self.d.polls.cancel(poll_id, out=out)
        if outcome is None:
            return None
        meal = self.d.store.get(outcome.meal_name)
        shown = meal_card(meal) if meal is not None else card(outcome.meal_name)
        out.say(outcome.chat_id, t("poll.cancelled", card=shown))
        return outcome
