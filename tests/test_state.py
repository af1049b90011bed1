from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from mealbot.core.events import DeleteMessage, Outbox, ScopeKey
from mealbot.core.state import CREATING_MEAL, PLANNING, UTC, SessionRegistry
from mealbot.core.tracker import MessageTracker


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(MessageTracker(), ttl_minutes=30)


def test_scope_keys() -> None:
    assert ScopeKey(10, 20).key == "10:20"
    assert ScopeKey(10).key == "10"
    assert ScopeKey.parse("-100:7") == ScopeKey(-100, 7)
    assert ScopeKey(10, 20).chat_scope() == ScopeKey(10)


def test_begin_get_advance(registry: SessionRegistry) -> None:
    scope = ScopeKey(10, 20)
    session = registry.begin(scope, CREATING_MEAL, draft={"name": "Pasta"}, now=T0)
    assert session.step == "awaiting-name"

    advanced = registry.advance(scope, "awaiting-tags", {"rating": 4}, now=T0)
    assert advanced.id == session.id
    assert advanced.draft == {"name": "Pasta", "rating": 4}

    found = registry.get(scope, now=T0)
    assert found is not None
    assert found.step == "awaiting-tags"


def test_steps_never_go_back(registry: SessionRegistry) -> None:
    scope = ScopeKey(10, 20)
    registry.begin(scope, CREATING_MEAL, step="confirm", now=T0)
    registry.advance(scope, "confirm", {"overwrite": True}, now=T0)
    with pytest.raises(ValueError):
        registry.advance(scope, "awaiting-name", now=T0)
    with pytest.raises(ValueError):
        registry.advance(scope, "proposed", now=T0)


def test_advance_without_session(registry: SessionRegistry) -> None:
    with pytest.raises(LookupError):
        registry.advance(ScopeKey(1, 2), "done")


def test_one_session_per_scope(registry: SessionRegistry) -> None:
    scope = ScopeKey(10, 20)
    first = registry.begin(scope, CREATING_MEAL, now=T0)
    registry.tracker.track(first.id, chat_id=10, message_id=99, role="prompt")

    out = Outbox()
    second = registry.begin(scope, PLANNING, now=T0, out=out)
    assert second.id != first.id
    assert out.actions == [DeleteMessage(chat_id=10, message_id=99)]
    assert registry.get(scope, now=T0).kind == PLANNING
    # Other users in the same chat are unaffected.
    assert registry.get(ScopeKey(10, 21), now=T0) is None


def test_idle_sessions_expire_lazily(registry: SessionRegistry) -> None:
    scope = ScopeKey(10, 20)
    session = registry.begin(scope, CREATING_MEAL, now=T0)
    registry.tracker.track(session.id, chat_id=10, message_id=5, role="prompt")

    assert registry.get(scope, now=T0 + timedelta(minutes=29)) is not None

    out = Outbox()
    assert registry.get(scope, now=T0 + timedelta(minutes=31), out=out) is None
    assert out.actions == [DeleteMessage(chat_id=10, message_id=5)]
    assert registry.find(session.id) is None


def test_advance_extends_expiry(registry: SessionRegistry) -> None:
    scope = ScopeKey(10, 20)
    registry.begin(scope, CREATING_MEAL, now=T0)
    registry.advance(scope, "awaiting-rating", now=T0 + timedelta(minutes=20))
    assert registry.get(scope, now=T0 + timedelta(minutes=45)) is not None


def test_end_runs_hooks(registry: SessionRegistry) -> None:
    ended = []
    registry.on_end(lambda session, out: ended.append(session.id))
    scope = ScopeKey(10, 20)
    session = registry.begin(scope, CREATING_MEAL, now=T0)

    assert registry.end(scope) is not None
    assert registry.end(scope) is None
    assert ended == [session.id]
