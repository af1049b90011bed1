from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    bot_token: str
    database_url: str | None = None
    db_path: str = "mealbot.db"
    webhook_url: str | None = None
    webhook_path: str = "/telegram"
    webhook_secret_token: str | None = None
    session_ttl_minutes: int = 30
    poll_duration_s: int = 600
    poll_quorum: int = 0
    default_rating: float = 3.0
    rating_floor: float = 0.5
    default_plan_size: int = 7
    operator_ids: frozenset[int] = field(default_factory=frozenset)
    admin_password: str | None = None


def _parse_ids(raw: str) -> frozenset[int]:
    out: set[int] = set()
    for part in raw.replace(";", ",").split(","):
        part = part.strip()
        if part.lstrip("-").isdigit():
            out.add(int(part))
    return frozenset(out)


def load_settings() -> Settings:
    # Supports running with either `.env` present or purely env-driven.
    load_dotenv(override=False)

    bot_token = os.getenv("BOT_TOKEN", "").strip()
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required (set it in environment or .env).")

    return Settings(
        bot_token=bot_token,
        database_url=os.getenv("DATABASE_URL", "").strip() or None,
        db_path=os.getenv("DB_PATH", "mealbot.db").strip() or "mealbot.db",
        webhook_url=os.getenv("WEBHOOK_URL", "").strip() or None,
        webhook_path=os.getenv("WEBHOOK_PATH", "/telegram").strip() or "/telegram",
        webhook_secret_token=os.getenv("WEBHOOK_SECRET_TOKEN", "").strip() or None,
        session_ttl_minutes=int(os.getenv("SESSION_TTL_MINUTES", "30").strip() or "30"),
        poll_duration_s=int(os.getenv("POLL_DURATION_S", "600").strip() or "600"),
        poll_quorum=int(os.getenv("POLL_QUORUM", "0").strip() or "0"),
        default_rating=float(os.getenv("DEFAULT_RATING", "3").strip() or "3"),
        rating_floor=float(os.getenv("RATING_FLOOR", "0.5").strip() or "0.5"),
        default_plan_size=int(os.getenv("DEFAULT_PLAN_SIZE", "7").strip() or "7"),
        operator_ids=_parse_ids(os.getenv("OPERATOR_IDS", "")),
        admin_password=os.getenv("ADMIN_PASSWORD", "").strip() or None,
    )
