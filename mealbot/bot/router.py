from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable

from mealbot.bot.creation import NEW_FLOW, CreationFlow
from mealbot.bot.deps import Deps
from mealbot.bot.flow_common import Callback, cb, meal_buttons, parse_cb
from mealbot.bot.planning import PLAN_FLOW, PlanningFlow
from mealbot.bot.rating import POLL_FLOW, RatingFlow
from mealbot.core.errors import ConflictError, MealBotError, NotAuthorizedError, NotFoundError, ValidationError
from mealbot.core.events import (
    Action,
    AnswerButton,
    Button,
    DeleteMessage,
    EditMessage,
    EventKind,
    Outbox,
    Payload,
    ScopeKey,
    SendPrompt,
    rows,
)
from mealbot.core.parsing import parse_new_command, parse_plan_size, split_command
from mealbot.core.state import CREATING_MEAL, PLANNING
from mealbot.core.text import meal_card, t


logger = logging.getLogger(__name__)

ActionSink = Callable[[list[Action]], Awaitable[None]]

# Commands that change stored meals; operators only in group chats.
MUTATING_COMMANDS = frozenset({"new", "newmeal", "remove", "photo", "rate"})


class EventRouter:
    """
    Single entry point for inbound events.

    `handle` is synchronous and returns the actions to perform; `process` adds
    per-scope serialisation and hands the actions to a sink (the executor).
    """

    def __init__(self, deps: Deps) -> None:
        self.d = deps
        self.creation = CreationFlow(deps)
        self.planning = PlanningFlow(deps)
        self.rating = RatingFlow(deps)
        # Locks live only while a handler holds or awaits them.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._sink: ActionSink | None = None
        deps.polls.set_timeout_handler(self.on_poll_timeout)

    def set_sink(self, sink: ActionSink) -> None:
        self._sink = sink

    # -----------------------
    # Serialisation
    # -----------------------

    def lock_scope(self, scope: ScopeKey, kind: EventKind, payload: Payload) -> ScopeKey:
        """Scope whose lock guards the event: the chat for poll traffic, else (chat, user)."""
        if kind == "poll-vote":
            return scope.chat_scope()
        if kind == "button":
            c = parse_cb(payload.data)
            if c and (c.flow == POLL_FLOW or (c.flow == "meal" and c.kind == "poll")):
                return scope.chat_scope()
        if kind in ("command", "photo"):
            parsed = split_command(payload.text)
            if parsed and parsed[0] == "rate":
                return scope.chat_scope()
        return scope

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def process(
        self,
        scope: ScopeKey,
        kind: EventKind,
        payload: Payload,
        *,
        sink: ActionSink | None = None,
    ) -> list[Action]:
        async with self._lock(self.lock_scope(scope, kind, payload).key):
            actions = self.handle(scope, kind, payload)
            target = sink or self._sink
            if target is not None:
                await target(actions)
            return actions

    async def on_poll_timeout(self, poll_id: str) -> None:
        poll = self.d.polls.get(poll_id)
        if poll is None:
            return
        scope = ScopeKey(poll.chat_id)
        async with self._lock(scope.key):
            out = Outbox()
            self.rating.finish(poll_id, out)
            if self._sink is not None:
                await self._sink(out.actions)

    # -----------------------
    # Dispatch
    # -----------------------

    def handle(self, scope: ScopeKey, kind: EventKind, payload: Payload) -> list[Action]:
        out = Outbox()
        try:
            self._dispatch(scope, kind, payload, out)
        except ValidationError as e:
            self._notify(kind, payload, out, str(e))
        except NotFoundError as e:
            self._notify(kind, payload, out, t("meal.not_found", name=e.name.upper()))
        except ConflictError as e:
            self._notify(kind, payload, out, t("meal.exists", name=e.name.upper()))
        except NotAuthorizedError:
            self._notify(kind, payload, out, t("common.not_authorized"), alert=True)
        except MealBotError as e:
            logger.warning("Unhandled %s in scope %s: %s", type(e).__name__, scope.key, e)
            self._notify(kind, payload, out, str(e))
        return out.actions

    def _dispatch(self, scope: ScopeKey, kind: EventKind, payload: Payload, out: Outbox) -> None:
        if kind == "poll-vote":
            self.rating.vote(payload, out)
            return

        if kind == "button":
            self._on_button(scope, payload, out)
            return

        # Commands, including `/new ...` or `/photo ...` as a photo caption.
        parsed = split_command(payload.text) if kind in ("command", "photo") else None
        if parsed is not None:
            self._on_command(scope, parsed[0], parsed[1], payload, out)
            return

        if kind in ("text", "photo"):
            session = self.d.registry.get(scope, out=out)
            if session is not None and session.kind == CREATING_MEAL:
                self.creation.handle(session, kind, payload, out)
            # Anything else outside a creation dialog is chatter.
            return

        logger.debug("Ignoring %s event in scope %s", kind, scope.key)

    def _on_command(self, scope: ScopeKey, cmd: str, args: str, payload: Payload, out: Outbox) -> None:
        chat_id = payload.chat_id
        if cmd in MUTATING_COMMANDS:
            self._require_operator(payload)

        if cmd == "start":
            out.say(chat_id, t("start.text"))
        elif cmd == "help":
            out.say(chat_id, t("help.text"))
        elif cmd == "newmeal":
            self.creation.start(scope, payload, out, name=args.strip() or None)
        elif cmd == "new":
            self.creation.quick_create(
                scope,
                payload,
                out,
                parse_new_command(args),
                photo_file_id=payload.photo_file_id,
            )
        elif cmd == "list":
            self._send_list(chat_id, out)
        elif cmd == "get":
            if not args.strip():
                out.say(chat_id, t("meal.usage_get"))
                return
            meal = self.d.store.require(args)
            out.add(
                SendPrompt(
                    chat_id=chat_id,
                    text=meal_card(meal),
                    buttons=meal_buttons(meal),
                    photo_file_id=meal.photo_file_id,
                )
            )
        elif cmd == "remove":
            if not args.strip():
                out.say(chat_id, t("meal.usage_remove"))
                return
            meal = self.d.store.delete(args)
            out.say(chat_id, t("meal.removed", card=meal_card(meal)))
        elif cmd == "search":
            self._search(chat_id, args, out)
        elif cmd == "photo":
            if not args.strip() or not payload.photo_file_id:
                out.say(chat_id, t("meal.usage_photo"))
                return
            meal = self.d.store.set_photo(args, payload.photo_file_id)
            out.add(
                SendPrompt(
                    chat_id=chat_id,
                    text=t("meal.photo_saved", card=meal_card(meal)),
                    photo_file_id=meal.photo_file_id,
                )
            )
        elif cmd == "rate":
            if not args.strip():
                out.say(chat_id, t("poll.usage"))
                return
            self.rating.start(scope, payload, out, args)
        elif cmd == "plan":
            count = parse_plan_size(args, default=self.d.settings.default_plan_size)
            self.planning.start(scope, payload, out, count)
        elif cmd == "cancel":
            if self.d.registry.end(scope, out=out) is None:
                out.say(chat_id, t("common.nothing_to_cancel"))
            else:
                out.say(chat_id, t("common.cancelled"))
        elif cmd == "auth":
            self._auth(args, payload, out)
        elif not payload.is_group:
            # Group chats carry commands meant for other bots.
            out.say(chat_id, t("common.unknown_command"))

    def _on_button(self, scope: ScopeKey, payload: Payload, out: Outbox) -> None:
        c = parse_cb(payload.data)
        if c is None:
            self._outdated(out)
            return

        if c.flow in (NEW_FLOW, PLAN_FLOW):
            want = CREATING_MEAL if c.flow == NEW_FLOW else PLANNING
            session = self.d.registry.get(scope, out=out)
            if session is None or session.kind != want:
                self._outdated(out)
                return
            if c.flow == NEW_FLOW:
                self.creation.handle(session, "button", payload, out)
            else:
                self.planning.handle(session, "button", payload, out)
            return

        if c.flow == POLL_FLOW:
            self._require_operator(payload)
            if c.kind == "stop":
                outcome = self.rating.finish(c.value, out)
            elif c.kind == "cancel":
                outcome = self.rating.cancel(c.value, out)
            else:
                outcome = None
            if outcome is None:
                self._outdated(out)
            return

        if c.flow == "meal":
            self._on_meal_button(scope, c, payload, out)
        elif c.flow == "list":
            self._on_list_button(c, payload, out)
        elif c.flow == "msg" and c.kind == "delete" and payload.message_id is not None:
            out.add(DeleteMessage(chat_id=payload.chat_id, message_id=payload.message_id))
        else:
            self._outdated(out)

    def _on_meal_button(self, scope: ScopeKey, c: Callback, payload: Payload, out: Outbox) -> None:
        self._require_operator(payload)
        meal = self.d.store.get_by_id(c.value)
        if meal is None:
            self._outdated(out)
            return
        if c.kind == "poll":
            self.rating.start(scope, payload, out, meal.name)
        elif c.kind == "remove":
            removed = self.d.store.delete(meal.name)
            out.say(payload.chat_id, t("meal.removed", card=meal_card(removed)))
        else:
            self._outdated(out)

    def _on_list_button(self, c: Callback, payload: Payload, out: Outbox) -> None:
        if payload.message_id is None:
            return
        if c.kind == "show":
            meal = self.d.store.get_by_id(c.value)
            if meal is None:
                self._outdated(out)
                return
            out.add(
                EditMessage(
                    chat_id=payload.chat_id,
                    message_id=payload.message_id,
                    text=meal_card(meal),
                    buttons=rows(
                        [
                            Button(t("common.back"), cb("list", "back")),
                            Button(t("common.exit"), cb("msg", "delete")),
                        ]
                    ),
                )
            )
        elif c.kind == "back":
            text, buttons = self._list_view()
            out.add(EditMessage(chat_id=payload.chat_id, message_id=payload.message_id, text=text, buttons=buttons))
        else:
            self._outdated(out)

    # -----------------------
    # Plain commands
    # -----------------------

    def _list_view(self) -> tuple[str, tuple]:
        meals = self.d.store.list()
        if not meals:
            return t("list.empty"), ()
        buttons = rows(
            *[[Button(m.name, cb("list", "show", m.id))] for m in meals],
            [Button(t("common.exit"), cb("msg", "delete"))],
        )
        return t("list.title"), buttons

    def _send_list(self, chat_id: int, out: Outbox) -> None:
        text, buttons = self._list_view()
        out.say(chat_id, text, buttons=buttons)

    def _search(self, chat_id: int, query: str, out: Outbox) -> None:
        if not query.strip():
            out.say(chat_id, t("search.usage"))
            return
        found = self.d.store.search(query)
        if not found:
            out.say(chat_id, t("search.empty", query=query.strip()))
            return
        buttons = rows(
            *[[Button(m.name, cb("list", "show", m.id))] for m in found],
            [Button(t("common.exit"), cb("msg", "delete"))],
        )
        out.say(chat_id, t("search.title"), buttons=buttons)

    def _auth(self, args: str, payload: Payload, out: Outbox) -> None:
        password = args.strip()
        if payload.is_group and payload.message_id is not None:
            # Do not leave the password in the group history.
            out.add(DeleteMessage(chat_id=payload.chat_id, message_id=payload.message_id))
        if not password:
            out.say(payload.chat_id, t("auth.usage"))
        elif self.d.operators.authenticate(payload.user_id, password):
            out.say(payload.chat_id, t("auth.ok"))
        else:
            logger.warning("Failed /auth attempt by user %s", payload.user_id)
            out.say(payload.chat_id, t("auth.bad"))

    # -----------------------
    # Helpers
    # -----------------------

    def _require_operator(self, payload: Payload) -> None:
        if payload.is_group and not self.d.operators.is_authorized(payload.user_id):
            raise NotAuthorizedError(f"user {payload.user_id} is not an operator")

    @staticmethod
    def _outdated(out: Outbox) -> None:
        out.add(AnswerButton(t("common.expired"), alert=True))

    @staticmethod
    def _notify(kind: EventKind, payload: Payload, out: Outbox, text: str, *, alert: bool = False) -> None:
        if kind == "button":
            out.add(AnswerButton(text, alert=alert))
        elif kind != "poll-vote":
            out.say(payload.chat_id, text)
