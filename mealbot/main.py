from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import urlparse

from telegram import Update
from telegram.ext import Application

from mealbot.bot.deps import build_deps
from mealbot.bot.handlers import build_handlers
from mealbot.bot.keyboards import bot_commands
from mealbot.bot.router import EventRouter
from mealbot.core.config import Settings, load_settings
from mealbot.db.session import dispose_db, init_db


logging.basicConfig(
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    level=logging.INFO,
)
# httpx logs every Bot API request at INFO.
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("mealbot")


def _start_http_server(
    *,
    port: int,
    webhook_path: str,
    loop: asyncio.AbstractEventLoop,
    app: Application,
    webhook_secret_token: str | None,
) -> HTTPServer:
    """
    Minimal HTTP server for health checks and the Telegram webhook.

    Updates are decoded here and handed to the Application on its asyncio loop.
    """
    normalized_path = (webhook_path or "/telegram").strip() or "/telegram"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    class Handler(BaseHTTPRequestHandler):
        def _read_body(self) -> bytes:
            length_raw = self.headers.get("Content-Length", "0")
            try:
                length = int(length_raw)
            except ValueError:
                length = 0
            if length <= 0:
                return b""
            return self.rfile.read(length)

        def _reply(self, status: int, body: bytes = b"") -> None:
            self.send_response(status)
            if body:
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if body:
                self.wfile.write(body)

        def do_GET(self) -> None:  # noqa: N802
            if urlparse(self.path).path in ("/", "/health", "/healthz"):
                self._reply(200, b"ok")
                return
            self._reply(404)

        def do_POST(self) -> None:  # noqa: N802
            if urlparse(self.path).path != normalized_path:
                self._reply(404)
                return
            if webhook_secret_token:
                got = self.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
                if got != webhook_secret_token:
                    self._reply(403)
                    return

            raw = self._read_body()
            if not raw:
                self._reply(400)
                return
            try:
                update = Update.de_json(json.loads(raw.decode("utf-8")), app.bot)
            except (UnicodeDecodeError, ValueError):
                logger.exception("Failed to decode incoming webhook update")
                self._reply(400)
                return

            # Schedule processing on the main asyncio loop and return immediately.
            asyncio.run_coroutine_threadsafe(app.process_update(update), loop)
            self._reply(200, b"ok")

        def log_message(self, format: str, *args) -> None:
            return

    server = HTTPServer(("0.0.0.0", port), Handler)
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logger.info("HTTP server listening on 0.0.0.0:%s (webhook path: %s)", port, normalized_path)
    return server


def build_app(settings: Settings) -> Application:
    # Updates run concurrently; the router serialises them per scope.
    app = (
        Application.builder()
        .token(settings.bot_token)
        .concurrent_updates(True)
        .post_init(_on_startup)
        .post_shutdown(_on_shutdown)
        .build()
    )
    router = EventRouter(build_deps(settings))
    build_handlers(app, router)
    return app


async def _on_startup(app: Application) -> None:
    await app.bot.set_my_commands(bot_commands())
    router: EventRouter = app.bot_data["router"]
    rearmed = router.d.polls.reschedule_open()
    if rearmed:
        logger.info("Re-armed %d open poll(s)", rearmed)


async def _on_shutdown(app: Application) -> None:
    dispose_db()


async def _run_webhook(settings: Settings) -> None:
    port = int(os.getenv("PORT", "").strip() or "8080")

    app = build_app(settings)
    await app.initialize()
    # post_init only runs under run_polling/run_webhook.
    await _on_startup(app)
    await app.start()

    loop = asyncio.get_running_loop()
    server = _start_http_server(
        port=port,
        webhook_path=settings.webhook_path,
        loop=loop,
        app=app,
        webhook_secret_token=settings.webhook_secret_token,
    )

    webhook_base = (settings.webhook_url or "").rstrip("/")
    webhook_path = settings.webhook_path if settings.webhook_path.startswith("/") else f"/{settings.webhook_path}"
    webhook_full_url = f"{webhook_base}{webhook_path}"

    logger.info("Setting Telegram webhook to %s", webhook_full_url)
    await app.bot.set_webhook(
        url=webhook_full_url,
        drop_pending_updates=True,
        secret_token=settings.webhook_secret_token,
        allowed_updates=Update.ALL_TYPES,
    )

    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Some platforms (e.g., Windows) don't support signal handlers in asyncio.
            pass

    await stop_event.wait()

    server.shutdown()
    server.server_close()
    await app.stop()
    await app.shutdown()
    await _on_shutdown(app)


def main() -> None:
    settings = load_settings()
    init_db(settings.database_url, settings.db_path)

    if settings.webhook_url:
        logger.info("Starting bot (webhook mode)...")
        asyncio.run(_run_webhook(settings))
        return

    app = build_app(settings)
    logger.info("Starting bot (polling; set WEBHOOK_URL to enable webhooks)...")
    app.run_polling(allowed_updates=["message", "callback_query", "poll_answer", "inline_query"])


if __name__ == "__main__":
    main()
