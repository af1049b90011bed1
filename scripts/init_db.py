from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv

from mealbot.db.session import init_db


def main() -> None:
    load_dotenv(override=False)
    parser = argparse.ArgumentParser(description="Create the meal bot database schema.")
    parser.add_argument(
        "--db",
        default=os.getenv("DB_PATH", "").strip() or "mealbot.db",
        help="Path to sqlite db file (default: DB_PATH or mealbot.db)",
    )
    args = parser.parse_args()

    database_url = os.getenv("DATABASE_URL", "").strip() or None
    init_db(database_url, args.db)
    if database_url:
        print("Initialized DB using DATABASE_URL")
    else:
        print(f"Initialized DB at {args.db}")


if __name__ == "__main__":
    main()
