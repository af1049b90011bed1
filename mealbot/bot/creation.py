from __future__ import annotations

import logging

from mealbot.bot.deps import Deps
from mealbot.bot.flow_common import cb, meal_buttons, nav_row, parse_cb, rating_row
from mealbot.core.errors import ConflictError, ValidationError
from mealbot.core.events import Button, EventKind, Outbox, Payload, ScopeKey, SendPrompt, rows
from mealbot.core.parsing import MAX_RATING, NewMealArgs, clean_name, merge_tags, parse_rating, parse_tags_and_links
from mealbot.core.state import CREATING_MEAL, STEPS, Session
from mealbot.core.text import draft_card, meal_card, t


logger = logging.getLogger(__name__)

NEW_FLOW = "new"

NAME, RATING, TAGS, PHOTO, CONFIRM, DONE = STEPS[CREATING_MEAL]


class CreationFlow:
    """
    Step-by-step meal creation:
    name -> rating -> tags (optional) -> photo (optional) -> confirm -> done.

    Input of the wrong type keeps the step and replaces the prompt with a
    clarifying one.
    """

    def __init__(self, deps: Deps) -> None:
        self.d = deps

    # -----------------------
    # Entry points
    # -----------------------

    def start(self, scope: ScopeKey, payload: Payload, out: Outbox, *, name: str | None = None) -> Session:
        return self.start_seeded(scope, payload, out, NewMealArgs(name=clean_name(name) if name else None))

    def start_seeded(
        self,
        scope: ScopeKey,
        payload: Payload,
        out: Outbox,
        args: NewMealArgs,
        *,
        photo_file_id: str | None = None,
    ) -> Session:
        draft: dict = {
            "tags": list(args.tags),
            "references": list(args.references),
            "overwrite": False,
            "tags_done": bool(args.tags or args.references),
        }
        if args.name:
            draft["name"] = args.name
        if args.rating is not None:
            draft["rating"] = args.rating
        if photo_file_id:
            draft["photo_file_id"] = photo_file_id

        conflict = bool(args.name) and self.d.store.get(args.name) is not None
        step = NAME if (not args.name or conflict) else self._next_step(draft, NAME)
        session = self.d.registry.begin(scope, CREATING_MEAL, draft=draft, step=step, out=out)
        self.d.echo(session, payload, out)
        self._render(session, out, retry=args.rating_invalid and step == RATING, conflict=conflict)
        return session

    def quick_create(
        self,
        scope: ScopeKey,
        payload: Payload,
        out: Outbox,
        args: NewMealArgs,
        *,
        photo_file_id: str | None = None,
    ) -> None:
        """`/new` with every required field: persist without a session."""
        if not args.complete:
            self.start_seeded(scope, payload, out, args, photo_file_id=photo_file_id)
            return
        try:
            meal = self.d.store.create(
                args.name or "",
                rating=args.rating,
                tags=args.tags,
                references=args.references,
                photo_file_id=photo_file_id,
            )
        except ConflictError:
            draft = {
                "name": args.name,
                "rating": args.rating,
                "tags": list(args.tags),
                "references": list(args.references),
                "photo_file_id": photo_file_id,
                "overwrite": False,
                "tags_done": True,
            }
            session = self.d.registry.begin(scope, CREATING_MEAL, draft=draft, step=CONFIRM, out=out)
            self.d.echo(session, payload, out)
            self._render(session, out, conflict=True)
            return
        out.add(
            SendPrompt(
                chat_id=payload.chat_id,
                text=t("meal.saved", card=meal_card(meal)),
                buttons=meal_buttons(meal),
                photo_file_id=meal.photo_file_id,
            )
        )

    # -----------------------
    # Transitions
    # -----------------------

    def handle(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        if kind in ("text", "photo"):
            self.d.echo(session, payload, out)

        if kind == "button":
            c = parse_cb(payload.data)
            if c and c.flow == NEW_FLOW and c.kind == "nav" and c.value == "cancel":
                self.cancel(session, out)
                return

        if session.step == NAME:
            self._on_name(session, kind, payload, out)
        elif session.step == RATING:
            self._on_rating(session, kind, payload, out)
        elif session.step == TAGS:
            self._on_tags(session, kind, payload, out)
        elif session.step == PHOTO:
            self._on_photo(session, kind, payload, out)
        elif session.step == CONFIRM:
            self._on_confirm(session, kind, payload, out)

    def cancel(self, session: Session, out: Outbox) -> None:
        self.d.registry.end(session.scope, out=out)
        out.say(session.scope.chat_id, t("common.cancelled"))

    def _on_name(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        c = parse_cb(payload.data) if kind == "button" else None
        if c and c.flow == NEW_FLOW and c.kind == "overwrite" and session.draft.get("name"):
            self._advance(session, out, NAME, {"overwrite": True})
            return
        if kind != "text":
            self._render(session, out, retry=True)
            return
        try:
            name = clean_name(payload.text)
        except ValidationError as e:
            self._render(session, out, error=str(e))
            return
        if self.d.store.get(name) is not None:
            session = self.d.registry.advance(session.scope, NAME, {"name": name, "overwrite": False})
            self._render(session, out, conflict=True)
            return
        self._advance(session, out, NAME, {"name": name, "overwrite": False})

    def _on_rating(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        rating: float | None = None
        if kind == "button":
            c = parse_cb(payload.data)
            if c and c.flow == NEW_FLOW and c.kind == "rate":
                try:
                    rating = parse_rating(c.value)
                except ValidationError:
                    rating = None
        elif kind == "text":
            try:
                rating = parse_rating(payload.text)
            except ValidationError:
                rating = None
        if rating is None:
            self._render(session, out, retry=True)
            return
        self._advance(session, out, RATING, {"rating": rating})

    def _on_tags(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        if kind == "button" and self._is_skip(payload):
            self._advance(session, out, TAGS, {"tags_done": True})
            return
        if kind == "photo" and payload.photo_file_id:
            # Tags are optional: a photo here means the user skipped them.
            self._advance(session, out, TAGS, {"tags_done": True, "photo_file_id": payload.photo_file_id})
            return
        if kind != "text" or not payload.text.strip():
            self._render(session, out, retry=True)
            return
        tags, links = parse_tags_and_links(payload.text)
        refs = list(session.draft.get("references") or [])
        refs.extend(link for link in links if link not in refs)
        self._advance(
            session,
            out,
            TAGS,
            {
                "tags": merge_tags(list(session.draft.get("tags") or []), tags),
                "references": refs,
                "tags_done": True,
            },
        )

    def _on_photo(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        if kind == "button" and self._is_skip(payload):
            self._advance(session, out, PHOTO, {})
            return
        if kind == "photo" and payload.photo_file_id:
            self._advance(session, out, PHOTO, {"photo_file_id": payload.photo_file_id})
            return
        self._render(session, out, retry=True)

    def _on_confirm(self, session: Session, kind: EventKind, payload: Payload, out: Outbox) -> None:
        c = parse_cb(payload.data) if kind == "button" else None
        if c and c.flow == NEW_FLOW and c.kind == "confirm":
            self._save(session, out, overwrite=bool(session.draft.get("overwrite")))
            return
        if c and c.flow == NEW_FLOW and c.kind == "overwrite":
            self._save(session, out, overwrite=True)
            return
        self._render(session, out, retry=True)

    def _save(self, session: Session, out: Outbox, *, overwrite: bool) -> None:
        draft = session.draft
        try:
            meal = self.d.store.create(
                draft.get("name") or "",
                rating=draft.get("rating"),
                tags=list(draft.get("tags") or []),
                references=list(draft.get("references") or []),
                photo_file_id=draft.get("photo_file_id"),
                overwrite=overwrite,
            )
        except ConflictError:
            session = self.d.registry.advance(session.scope, CONFIRM, {"overwrite": False})
            self._render(session, out, conflict=True)
            return
        self.d.registry.advance(session.scope, DONE)
        out.add(
            SendPrompt(
                chat_id=session.scope.chat_id,
                text=t("meal.saved", card=meal_card(meal)),
                buttons=meal_buttons(meal),
                photo_file_id=meal.photo_file_id,
            )
        )
        self.d.registry.end(session.scope, out=out)

    # -----------------------
    # Helpers
    # -----------------------

    @staticmethod
    def _is_skip(payload: Payload) -> bool:
        c = parse_cb(payload.data)
        return bool(c and c.flow == NEW_FLOW and c.kind == "nav" and c.value == "skip")

    @staticmethod
    def _next_step(draft: dict, after: str) -> str:
        steps = STEPS[CREATING_MEAL]
        for step in steps[steps.index(after) + 1 :]:
            if step == RATING and draft.get("rating") is not None:
                continue
            if step == TAGS and draft.get("tags_done"):
                continue
            if step == PHOTO and draft.get("photo_file_id"):
                continue
            return step
        return CONFIRM

    def _advance(self, session: Session, out: Outbox, current: str, patch: dict) -> None:
        draft = {**session.draft, **patch}
        nxt = self._next_step(draft, current)
        session = self.d.registry.advance(session.scope, nxt, patch)
        self._render(session, out)

    def _render(
        self,
        session: Session,
        out: Outbox,
        *,
        retry: bool = False,
        conflict: bool = False,
        error: str | None = None,
    ) -> None:
        draft = session.draft
        name = (draft.get("name") or "").upper()
        card = draft_card(draft)
        nav = nav_row(flow=NEW_FLOW)
        step = session.step

        if step == NAME:
            if conflict:
                text = t("new.name_conflict", name=name)
                buttons = rows([Button(t("new.overwrite_btn"), cb(NEW_FLOW, "overwrite"))], nav)
            else:
                if error:
                    text = t("new.name_retry", error=error)
                elif retry:
                    text = t("new.name_retry", error=t("new.name"))
                else:
                    text = t("new.name")
                buttons = rows(nav)
        elif step == RATING:
            text = t("new.rating_retry", name=name, max=MAX_RATING) if retry else t("new.rating", name=name)
            buttons = rows(rating_row(flow=NEW_FLOW), nav)
        elif step == TAGS:
            text = t("new.tags_retry" if retry else "new.tags", card=card)
            buttons = rows(nav_row(flow=NEW_FLOW, show_skip=True))
        elif step == PHOTO:
            text = t("new.photo_retry" if retry else "new.photo", card=card)
            buttons = rows(nav_row(flow=NEW_FLOW, show_skip=True))
        elif step == CONFIRM:
            if conflict:
                text = t("new.confirm_conflict", card=card)
                buttons = rows([Button(t("new.overwrite_btn"), cb(NEW_FLOW, "overwrite"))], nav)
            else:
                text = t("new.confirm_retry" if retry else "new.confirm", card=card)
                buttons = rows([Button(t("common.save"), cb(NEW_FLOW, "confirm", "save"))], nav)
        else:
            logger.warning("No prompt for step %s of session %s", step, session.id)
            return

        self.d.prompt(session, out, SendPrompt(chat_id=session.scope.chat_id, text=text, buttons=buttons))
