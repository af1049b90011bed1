from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select

from mealbot.core.errors import NotFoundError
from mealbot.core.events import ClosePoll, Outbox, ScopeKey
from mealbot.core.state import Session, SessionRegistry, _as_utc_aware, now_utc
from mealbot.db.models import Poll, PollVote
from mealbot.db.session import get_session
from mealbot.services.meals import MealStore


logger = logging.getLogger(__name__)

TimeoutHandler = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class PollOutcome:
    poll_id: str
    session_id: str
    meal_name: str
    chat_id: int
    votes: int
    # Rating applied to the meal; None when the poll was cancelled or the
    # meal disappeared while voting.
    rating: float | None
    cancelled: bool = False


class PollAggregator:
    """
    Group rating polls: open -> closed.

    Votes are stored one row per (poll, voter), so a second vote from the same
    voter replaces the first. The final rating is the arithmetic mean of the
    votes, computed once when the poll closes, and the poll is then discarded.
    """

    def __init__(
        self,
        store: MealStore,
        registry: SessionRegistry,
        *,
        default_rating: float = 3.0,
    ) -> None:
        self._store = store
        self._registry = registry
        self._default_rating = default_rating
        self._timers: dict[str, asyncio.Task] = {}
        self._on_timeout: TimeoutHandler | None = None
        registry.on_end(self._on_session_end)

    def set_timeout_handler(self, handler: TimeoutHandler) -> None:
        """Route deadline expiry through `handler` (e.g. the per-scope event queue)."""
        self._on_timeout = handler

    def open(
        self,
        meal_name: str,
        scope: ScopeKey,
        duration_s: int,
        *,
        session_id: str,
        quorum: int = 0,
        now: datetime | None = None,
    ) -> Poll:
        now = _as_utc_aware(now or now_utc())
        with get_session() as session:
            poll = Poll(
                session_id=session_id,
                scope_key=scope.key,
                meal_name=meal_name,
                chat_id=scope.chat_id,
                deadline=now + timedelta(seconds=duration_s),
                quorum=max(0, quorum),
                status="open",
            )
            session.add(poll)
            session.flush()
        logger.info("Poll %s opened for %r (%ss)", poll.id, meal_name, duration_s)
        self._schedule(poll.id, float(duration_s))
        return poll

    def attach(self, poll_id: str, *, tg_poll_id: str, message_id: int) -> None:
        """Link the poll to the chat message that carries it."""
        with get_session() as session:
            poll = session.get(Poll, poll_id)
            if poll is None:
                return
            poll.tg_poll_id = tg_poll_id
            poll.message_id = message_id

    def get(self, poll_id: str) -> Poll | None:
        with get_session() as session:
            return session.get(Poll, poll_id)

    def find_by_tg_id(self, tg_poll_id: str) -> Poll | None:
        with get_session() as session:
            return session.execute(select(Poll).where(Poll.tg_poll_id == tg_poll_id)).scalar_one_or_none()

    def find_by_session(self, session_id: str) -> Poll | None:
        with get_session() as session:
            return session.execute(
                select(Poll).where(Poll.session_id == session_id, Poll.status == "open")
            ).scalar_one_or_none()

    def votes(self, poll_id: str) -> dict[int, int]:
        with get_session() as session:
            found = session.execute(select(PollVote).where(PollVote.poll_id == poll_id)).scalars()
            return {v.voter_id: v.value for v in found}

    def record_vote(self, poll_id: str, voter_id: int, value: int | None) -> bool:
        """
        Store `voter_id`'s vote, replacing any earlier one; `None` retracts it.

        Votes for closed or unknown polls are dropped. Returns True when the
        poll's quorum has been reached.
        """
        with get_session() as session:
            poll = session.get(Poll, poll_id)
            if poll is None or poll.status != "open":
                logger.debug("Dropping late vote for poll %s", poll_id)
                return False
            vote = session.get(PollVote, (poll_id, voter_id))
            if value is None:
                if vote is not None:
                    session.delete(vote)
            elif vote is None:
                session.add(PollVote(poll_id=poll_id, voter_id=voter_id, value=int(value)))
            else:
                vote.value = int(value)
            session.flush()
            count = session.execute(
                select(func.count()).select_from(PollVote).where(PollVote.poll_id == poll_id)
            ).scalar_one()
            return bool(poll.quorum) and count >= poll.quorum

    def close(self, poll_id: str, *, out: Outbox) -> PollOutcome | None:
        """Reduce the votes to a rating, apply it and end the owning session."""
        return self._finish(poll_id, out=out, cancelled=False)

    def cancel(self, poll_id: str, *, out: Outbox) -> PollOutcome | None:
        """Close without touching the meal."""
        return self._finish(poll_id, out=out, cancelled=True)

    def reschedule_open(self, *, now: datetime | None = None) -> int:
        """Re-arm auto-close timers for polls left open by a previous process."""
        now = _as_utc_aware(now or now_utc())
        with get_session() as session:
            polls = list(session.execute(select(Poll).where(Poll.status == "open")).scalars())
        for poll in polls:
            delay = (_as_utc_aware(poll.deadline) - now).total_seconds()
            self._schedule(poll.id, max(0.0, delay))
        return len(polls)

    def _finish(self, poll_id: str, *, out: Outbox, cancelled: bool) -> PollOutcome | None:
        with get_session() as session:
            poll = session.get(Poll, poll_id)
            if poll is None or poll.status != "open":
                return None
            poll.status = "closed"
            values = [
                v.value for v in session.execute(select(PollVote).where(PollVote.poll_id == poll_id)).scalars()
            ]
        self._cancel_timer(poll_id)

        rating: float | None = None
        if not cancelled:
            rating = sum(values) / len(values) if values else self._default_rating
            try:
                self._store.set_rating(poll.meal_name, rating)
            except NotFoundError:
                logger.warning("Meal %r vanished while poll %s was open", poll.meal_name, poll_id)
                rating = None
        logger.info(
            "Poll %s %s for %r: %d vote(s), rating %s",
            poll_id,
            "cancelled" if cancelled else "closed",
            poll.meal_name,
            len(values),
            rating,
        )

        with get_session() as session:
            session.execute(delete(PollVote).where(PollVote.poll_id == poll_id))
            session.execute(delete(Poll).where(Poll.id == poll_id))

        if poll.message_id is not None:
            out.add(ClosePoll(chat_id=poll.chat_id, message_id=poll.message_id))

        scope = ScopeKey.parse(poll.scope_key)
        owner = self._registry.get(scope, out=out)
        if owner is not None and owner.id == poll.session_id:
            self._registry.end(scope, out=out)

        return PollOutcome(
            poll_id=poll_id,
            session_id=poll.session_id,
            meal_name=poll.meal_name,
            chat_id=poll.chat_id,
            votes=len(values),
            rating=rating,
            cancelled=cancelled,
        )

    def _on_session_end(self, ended: Session, out: Outbox) -> None:
        poll = self.find_by_session(ended.id)
        if poll is not None:
            self.cancel(poll.id, out=out)

    def _schedule(self, poll_id: str, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; poll %s closes only on explicit stop", poll_id)
            return
        self._cancel_timer(poll_id)
        self._timers[poll_id] = loop.create_task(self._expire_later(poll_id, delay))

    async def _expire_later(self, poll_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(poll_id, None)
        try:
            if self._on_timeout is not None:
                await self._on_timeout(poll_id)
            else:
                self.close(poll_id, out=Outbox())
        except Exception:
            logger.exception("Failed to close poll %s at its deadline", poll_id)

    def _cancel_timer(self, poll_id: str) -> None:
        task = self._timers.pop(poll_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
