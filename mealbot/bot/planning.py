from __future__ import annotations

import logging

from mealbot.bot.deps import Deps
from mealbot.bot.flow_common import cb, parse_cb
from mealbot.core.events import AnswerButton, Button, EventKind, OpenPoll, Outbox, Payload, ScopeKey, SendPrompt, rows
from mealbot.core.state import PLANNING, STEPS, Session
from mealbot.core.text import meal_card, t
from mealbot.services.planner import PlanResult


logger = logging.getLogger(__name__)

PLAN_FLOW = "plan"

PROPOSED, DONE = STEPS[PLANNING]

# Telegram caps poll options at 10.
MAX_VOTE_OPTIONS = 10


class PlanningFlow:
    """Propose a rating-weighted plan, let the user reroll it, then confirm."""

    def __init__(self, deps: Deps) -> None:
        self.d = deps

    def start(self, scope: ScopeKey, payload: Payload, out: Outbox, count: int) -> Session | None:
        meals = self.d.store.list()
        result = self.d.planner.plan(meals, count)
        if result.nothing_to_plan:
            self.d.registry.end(scope, out=out)
            out.say(payload.chat_id, t("plan.nothing"))
            return None
        draft = {**self._draft(result), "group": payload.is_group}
        session = self.d.registry.begin(scope, PLANNING, draft=draft, out=out)
        self.d.echo(session, payload, out)
        self._render(session, out)
        return session

    def handle(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        # Free text is not part of this dialog.
        if kind != "button":
            return
        c = parse_cb(payload.data)
        if c is None or c.flow != PLAN_FLOW:
            return

        if c.kind == "nav" and c.value == "cancel":
            self.d.registry.end(session.scope, out=out)
            out.say(session.scope.chat_id, t("common.cancelled"))
        elif c.kind == "reroll":
            self._reroll(session, out)
        elif c.kind == "show":
            self._show(session, c.value, out)
        elif c.kind == "hide":
            out.extend(self.d.tracker.discard(session.id, "keyboard"))
        elif c.kind == "vote":
            self._vote(session, out)
        elif c.kind == "ok":
            self._confirm(session, out)
        else:
            logger.debug("Ignoring plan callback %r", payload.data)

    def _reroll(self, session: Session, out: Outbox) -> None:
        previous = PlanResult(
            requested_count=int(session.draft.get("count") or 1),
            selection=tuple(session.draft.get("selection") or ()),
        )
        result = self.d.planner.reroll(previous, self.d.store.list())
        if result.nothing_to_plan:
            self.d.registry.end(session.scope, out=out)
            out.say(session.scope.chat_id, t("plan.nothing"))
            return
        session = self.d.registry.advance(session.scope, PROPOSED, self._draft(result))
        out.extend(self.d.tracker.discard(session.id, "keyboard"))
        out.extend(self.d.tracker.discard(session.id, "vote"))
        self._render(session, out)

    def _show(self, session: Session, meal_id: str, out: Outbox) -> None:
        meal = self.d.store.get_by_id(meal_id)
        if meal is None:
            out.say(session.scope.chat_id, t("meal.not_found", name="?"))
            return
        out.extend(
            self.d.tracker.supersede(
                session.id,
                "keyboard",
                SendPrompt(
                    chat_id=session.scope.chat_id,
                    text=meal_card(meal),
                    buttons=rows([Button(t("common.back"), cb(PLAN_FLOW, "hide"))]),
                    photo_file_id=meal.photo_file_id,
                ),
            )
        )

    def _vote(self, session: Session, out: Outbox) -> None:
        """Post the proposal as a group poll; pressing again re-posts it with the votes reset."""
        names = list(session.draft.get("selection") or [])[:MAX_VOTE_OPTIONS]
        if len(names) < 2:
            out.add(AnswerButton(t("plan.vote_too_few"), alert=True))
            return
        out.extend(self.d.tracker.discard(session.id, "vote"))
        out.add(
            OpenPoll(
                chat_id=session.scope.chat_id,
                poll_id=None,
                session_id=session.id,
                question=t("plan.vote_question"),
                options=tuple(names),
                role="vote",
                multiple_answers=True,
            )
        )
        if not session.draft.get("voting"):
            session = self.d.registry.advance(session.scope, PROPOSED, {"voting": True})
            self._render(session, out)

    def _confirm(self, session: Session, out: Outbox) -> None:
        names = list(session.draft.get("selection") or [])
        self.d.registry.advance(session.scope, DONE)
        lines = "\n".join(f"{i}. {name}" for i, name in enumerate(names, start=1))
        out.say(session.scope.chat_id, t("plan.final", lines=lines))
        self.d.registry.end(session.scope, out=out)

    def _draft(self, result: PlanResult) -> dict:
        ids: list[str | None] = []
        for name in result.selection:
            meal = self.d.store.get(name)
            ids.append(meal.id if meal is not None else None)
        return {
            "count": result.requested_count,
            "selection": list(result.selection),
            "ids": ids,
            "truncated": result.truncated,
            "voting": False,
        }

    def _render(self, session: Session, out: Outbox) -> None:
        draft = session.draft
        names = list(draft.get("selection") or [])
        ids = list(draft.get("ids") or [])
        text = t("plan.title", count=draft.get("count"))
        if draft.get("truncated"):
            text += "\n\n" + t("plan.truncated", available=len(names))

        meal_rows = [
            [Button(name, cb(PLAN_FLOW, "show", meal_id or ""))]
            for name, meal_id in zip(names, ids)
        ]
        vote_rows = []
        if draft.get("group"):
            label = t("plan.clear_votes_btn") if draft.get("voting") else t("plan.vote_btn")
            vote_rows.append([Button(label, cb(PLAN_FLOW, "vote"))])
        buttons = rows(
            *meal_rows,
            [Button(t("plan.reroll_btn"), cb(PLAN_FLOW, "reroll")), Button(t("common.ok"), cb(PLAN_FLOW, "ok"))],
            *vote_rows,
            [Button(t("common.cancel"), cb(PLAN_FLOW, "nav", "cancel"))],
        )
        self.d.prompt(session, out, SendPrompt(chat_id=session.scope.chat_id, text=text, buttons=buttons))
