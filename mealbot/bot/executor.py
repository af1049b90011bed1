from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from telegram import Bot, CallbackQuery, Message, ReplyParameters
from telegram.error import BadRequest, TelegramError

from mealbot.bot.deps import Deps
from mealbot.bot.keyboards import inline_markup
from mealbot.core.errors import TransportError
from mealbot.core.events import (
    Action,
    AnswerButton,
    ClosePoll,
    DeleteMessage,
    EditMessage,
    OpenPoll,
    Outbox,
    SendPrompt,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActionExecutor:
    """
    Performs router actions against the Telegram Bot API.

    Every action is best-effort: a failure is logged and the rest of the batch
    still runs, so a missing delete permission never breaks a flow.
    """

    def __init__(self, bot: Bot, deps: Deps) -> None:
        self.bot = bot
        self.d = deps

    async def run(self, actions: list[Action], *, query: CallbackQuery | None = None) -> None:
        answered = False
        queue = list(actions)
        while queue:
            action = queue.pop(0)
            try:
                if isinstance(action, AnswerButton):
                    if query is not None and not answered:
                        await _call(query.answer(action.text, show_alert=action.alert))
                        answered = True
                    continue
                queue[0:0] = await self._run_one(action)
            except TransportError as e:
                logger.warning("%s failed: %s", type(action).__name__, e)
        if query is not None and not answered:
            try:
                await _call(query.answer())
            except TransportError as e:
                logger.debug("Callback answer failed: %s", e)

    async def _run_one(self, action: Action) -> list[Action]:
        """Perform one action; returns follow-up actions (e.g. deletes of displaced messages)."""
        if isinstance(action, SendPrompt):
            return await self._send(action)
        if isinstance(action, EditMessage):
            markup = inline_markup(action.buttons)
            if action.has_media:
                await _call(
                    self.bot.edit_message_caption(
                        chat_id=action.chat_id,
                        message_id=action.message_id,
                        caption=action.text,
                        reply_markup=markup,
                    )
                )
            else:
                await _call(
                    self.bot.edit_message_text(
                        chat_id=action.chat_id,
                        message_id=action.message_id,
                        text=action.text,
                        reply_markup=markup,
                    )
                )
            return []
        if isinstance(action, DeleteMessage):
            await _call(self.bot.delete_message(chat_id=action.chat_id, message_id=action.message_id))
            return []
        if isinstance(action, OpenPoll):
            return await self._open_poll(action)
        if isinstance(action, ClosePoll):
            await _call(self.bot.stop_poll(chat_id=action.chat_id, message_id=action.message_id))
            return []
        logger.warning("Unknown action %r", action)
        return []

    async def _send(self, action: SendPrompt) -> list[Action]:
        kwargs: dict[str, Any] = {"reply_markup": inline_markup(action.buttons)}
        if action.reply_to is not None:
            kwargs["reply_parameters"] = ReplyParameters(
                message_id=action.reply_to,
                allow_sending_without_reply=True,
            )
        if action.photo_file_id:
            msg: Message = await _call(
                self.bot.send_photo(
                    chat_id=action.chat_id,
                    photo=action.photo_file_id,
                    caption=action.text,
                    **kwargs,
                )
            )
        else:
            msg = await _call(self.bot.send_message(chat_id=action.chat_id, text=action.text, **kwargs))

        if action.session_id is None or action.role is None or msg is None:
            return []
        if self.d.registry.find(action.session_id) is None:
            # The session ended earlier in this batch; nothing owns the message.
            return []
        return self.d.tracker.track(
            action.session_id,
            chat_id=msg.chat_id,
            message_id=msg.message_id,
            role=action.role,
            has_media=bool(action.photo_file_id),
        )

    async def _open_poll(self, action: OpenPoll) -> list[Action]:
        try:
            msg: Message = await _call(
                self.bot.send_poll(
                    chat_id=action.chat_id,
                    question=action.question,
                    options=list(action.options),
                    is_anonymous=False,
                    allows_multiple_answers=action.multiple_answers,
                    reply_markup=inline_markup(action.buttons),
                )
            )
        except TransportError:
            if action.poll_id is None:
                logger.warning("Could not open %s poll in chat %s", action.role, action.chat_id)
                return []
            logger.warning("Could not open poll %s; cancelling it", action.poll_id)
            out = Outbox()
            self.d.polls.cancel(action.poll_id, out=out)
            return out.actions
        if msg is None:
            return []
        if action.poll_id is not None and msg.poll is not None:
            self.d.polls.attach(action.poll_id, tg_poll_id=msg.poll.id, message_id=msg.message_id)
        if action.role is None or self.d.registry.find(action.session_id) is None:
            return []
        return self.d.tracker.track(
            action.session_id,
            chat_id=msg.chat_id,
            message_id=msg.message_id,
            role=action.role,
        )


async def _call(awaitable: Awaitable[T]) -> T | None:
    """Await a Bot API call, mapping Telegram failures to TransportError."""
    try:
        return await awaitable
    except BadRequest as e:
        if "message is not modified" in str(e).lower():
            return None
        raise TransportError(str(e)) from e
    except TelegramError as e:
        raise TransportError(str(e)) from e
