from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

from sqlalchemy import select

from mealbot.core.events import Outbox, ScopeKey
from mealbot.core.tracker import MessageRef, MessageTracker
from mealbot.db.models import ConversationSession
from mealbot.db.session import get_session


UTC = ZoneInfo("UTC")

logger = logging.getLogger(__name__)

SessionKind = Literal["creating-meal", "rating-poll", "planning"]

CREATING_MEAL: SessionKind = "creating-meal"
RATING_POLL: SessionKind = "rating-poll"
PLANNING: SessionKind = "planning"

# Steps of every flow, in the only order they may be visited.
STEPS: dict[str, tuple[str, ...]] = {
    CREATING_MEAL: (
        "awaiting-name",
        "awaiting-rating",
        "awaiting-tags",
        "awaiting-photo",
        "confirm",
        "done",
    ),
    RATING_POLL: ("open", "closed"),
    PLANNING: ("proposed", "done"),
}


def now_utc() -> datetime:
    return datetime.now(tz=UTC)


def _as_utc_aware(dt: datetime) -> datetime:
    """
    Normalize datetimes for safe comparisons & persistence.

    - If `dt` is naive, we assume it is UTC and attach UTC tzinfo.
    - If `dt` is aware, we convert it to UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


@dataclass
class Session:
    id: str
    scope: ScopeKey
    kind: str
    step: str
    draft: dict
    created_at: datetime
    expires_at: datetime
    message_refs: dict[str, MessageRef] = field(default_factory=dict)


EndHook = Callable[[Session, Outbox], None]


class SessionRegistry:
    """
    One active session per scope key, persisted in the `sessions` table.

    Sessions idle for longer than the TTL are expired lazily the next time
    their scope is looked up, and are then treated as absent.
    """

    def __init__(self, tracker: MessageTracker, *, ttl_minutes: int = 30) -> None:
        self._tracker = tracker
        self._ttl = timedelta(minutes=ttl_minutes)
        self._end_hooks: list[EndHook] = []

    @property
    def tracker(self) -> MessageTracker:
        return self._tracker

    def on_end(self, hook: EndHook) -> None:
        """Register a callback run whenever a session ends, for whatever reason."""
        self._end_hooks.append(hook)

    def begin(
        self,
        scope: ScopeKey,
        kind: SessionKind,
        *,
        draft: dict | None = None,
        step: str | None = None,
        ttl: timedelta | None = None,
        now: datetime | None = None,
        out: Outbox | None = None,
    ) -> Session:
        """Start a flow, replacing (and cleaning up) whatever the scope had running."""
        now = _as_utc_aware(now or now_utc())
        steps = STEPS[kind]
        first = step or steps[0]
        if first not in steps:
            raise ValueError(f"Unknown step {first!r} for {kind}")
        self.end(scope, out=out)
        with get_session() as session:
            row = ConversationSession(
                scope_key=scope.key,
                kind=kind,
                step=first,
                draft_json=json.dumps(draft or {}, ensure_ascii=False),
                created_at=now,
                updated_at=now,
                expires_at=now + (ttl or self._ttl),
            )
            session.add(row)
            session.flush()
            logger.info("Session %s began: %s at %s (scope %s)", row.id, kind, first, scope.key)
            return self._to_session(row, scope)

    def get(self, scope: ScopeKey, *, now: datetime | None = None, out: Outbox | None = None) -> Session | None:
        now = _as_utc_aware(now or now_utc())
        with get_session() as session:
            row = session.get(ConversationSession, scope.key)
            if not row:
                return None
            loaded = self._to_session(row, scope)
        if loaded.expires_at < now:
            logger.info("Session %s expired (scope %s)", loaded.id, scope.key)
            self.end(scope, out=out)
            return None
        loaded.message_refs = self._tracker.refs(loaded.id)
        return loaded

    def find(self, session_id: str) -> Session | None:
        with get_session() as session:
            row = session.execute(
                select(ConversationSession).where(ConversationSession.id == session_id)
            ).scalar_one_or_none()
            if not row:
                return None
            return self._to_session(row, ScopeKey.parse(row.scope_key))

    def advance(
        self,
        scope: ScopeKey,
        new_step: str,
        patch: dict | None = None,
        *,
        now: datetime | None = None,
    ) -> Session:
        """
        Move the scope's session to `new_step` and merge `patch` into its draft.

        Staying on the current step is allowed (re-prompts, draft patches);
        going back is not.
        """
        now = _as_utc_aware(now or now_utc())
        with get_session() as session:
            row = session.get(ConversationSession, scope.key)
            if not row:
                raise LookupError(f"No active session for scope {scope.key}")
            steps = STEPS[row.kind]
            if new_step not in steps:
                raise ValueError(f"Unknown step {new_step!r} for {row.kind}")
            if steps.index(new_step) < steps.index(row.step):
                raise ValueError(f"Cannot go back from {row.step!r} to {new_step!r} in {row.kind}")
            try:
                draft = json.loads(row.draft_json or "{}")
            except ValueError:
                draft = {}
            if patch:
                draft.update(patch)
            row.step = new_step
            row.draft_json = json.dumps(draft, ensure_ascii=False)
            row.updated_at = now
            row.expires_at = max(_as_utc_aware(row.expires_at), now + self._ttl)
            return self._to_session(row, scope)

    def end(self, scope: ScopeKey, *, out: Outbox | None = None) -> Session | None:
        with get_session() as session:
            row = session.get(ConversationSession, scope.key)
            if not row:
                return None
            ended = self._to_session(row, scope)
            session.delete(row)
        sink = out if out is not None else Outbox()
        sink.extend(self._tracker.cleanup(ended.id))
        for hook in self._end_hooks:
            hook(ended, sink)
        logger.info("Session %s ended at %s (scope %s)", ended.id, ended.step, scope.key)
        return ended

    @staticmethod
    def _to_session(row: ConversationSession, scope: ScopeKey) -> Session:
        try:
            draft = json.loads(row.draft_json or "{}")
        except ValueError:
            draft = {}
        return Session(
            id=row.id,
            scope=scope,
            kind=row.kind,
            step=row.step,
            draft=draft,
            created_at=_as_utc_aware(row.created_at),
            expires_at=_as_utc_aware(row.expires_at),
        )
