from __future__ import annotations

import logging

from telegram import InlineQueryResultArticle, InputTextMessageContent, Update
from telegram.constants import ChatType
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ContextTypes,
    InlineQueryHandler,
    MessageHandler,
    PollAnswerHandler,
    filters,
)

from mealbot.bot.executor import ActionExecutor
from mealbot.bot.router import EventRouter
from mealbot.core.events import EventKind, Payload, ScopeKey
from mealbot.core.text import meal_card, stars


logger = logging.getLogger(__name__)

_GROUP_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)


def _router(context: ContextTypes.DEFAULT_TYPE) -> EventRouter:
    return context.bot_data["router"]


def _executor(context: ContextTypes.DEFAULT_TYPE) -> ActionExecutor:
    return context.bot_data["executor"]


async def on_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    msg = update.effective_message
    user = update.effective_user
    chat = update.effective_chat
    if not msg or not user or not chat:
        return

    kind: EventKind
    photo_file_id = None
    if msg.photo:
        kind = "photo"
        text = msg.caption or ""
        # Largest size comes last.
        photo_file_id = msg.photo[-1].file_id
    else:
        text = msg.text or ""
        kind = "command" if text.startswith("/") else "text"

    payload = Payload(
        chat_id=chat.id,
        user_id=user.id,
        message_id=msg.message_id,
        text=text,
        photo_file_id=photo_file_id,
        is_group=chat.type in _GROUP_TYPES,
    )
    await _router(context).process(ScopeKey(chat.id, user.id), kind, payload)


async def on_button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    user = update.effective_user
    if not query or not user:
        return
    message = query.message
    if message is None:
        await query.answer()
        return
    chat = message.chat

    payload = Payload(
        chat_id=chat.id,
        user_id=user.id,
        message_id=message.message_id,
        data=query.data or "",
        is_group=chat.type in _GROUP_TYPES,
    )
    executor = _executor(context)

    async def sink(actions) -> None:
        await executor.run(actions, query=query)

    await _router(context).process(ScopeKey(chat.id, user.id), "button", payload, sink=sink)


async def on_poll_answer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    answer = update.poll_answer
    if not answer or not answer.user:
        return
    router = _router(context)
    poll = router.d.polls.find_by_tg_id(answer.poll_id)
    if poll is None:
        return
    payload = Payload(
        chat_id=poll.chat_id,
        user_id=answer.user.id,
        poll_id=answer.poll_id,
        option_ids=tuple(answer.option_ids),
        is_group=True,
    )
    await router.process(ScopeKey(poll.chat_id), "poll-vote", payload)


async def on_inline_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.inline_query
    if not query:
        return
    meals = _router(context).d.store.search(query.query, limit=20)
    results = [
        InlineQueryResultArticle(
            id=meal.id,
            title=meal.name,
            description=stars(meal.rating) or None,
            input_message_content=InputTextMessageContent(meal_card(meal)),
        )
        for meal in meals
    ]
    await query.answer(results, cache_time=5)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %r", update, exc_info=context.error)


def build_handlers(app: Application, router: EventRouter) -> None:
    executor = ActionExecutor(app.bot, router.d)
    router.set_sink(executor.run)
    app.bot_data["router"] = router
    app.bot_data["executor"] = executor

    app.add_handler(MessageHandler((filters.TEXT | filters.PHOTO) & ~filters.UpdateType.EDITED, on_message))
    app.add_handler(CallbackQueryHandler(on_button))
    app.add_handler(PollAnswerHandler(on_poll_answer))
    app.add_handler(InlineQueryHandler(on_inline_query))
    app.add_error_handler(on_error)
