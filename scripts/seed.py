"""Seed the database with demo recipients and preferences."""

from __future__ import annotations

from dotenv import load_dotenv

from dealbot.db.migrate import run_migrations
from dealbot.db.session import create_engine_from_env
from dealbot.db.store import DealStore
from dealbot.ingest import load_stores
from dealbot.utils.log import configure_logging

DEMO_RECIPIENTS = [
    {"telegram_id": 1001, "username": "food_fan", "categories": [4]},
    {"telegram_id": 1002, "username": "everything", "categories": []},
    {"telegram_id": 1003, "username": "wardrobe", "categories": [5, 6]},
]


def main() -> None:
    load_dotenv()
    configure_logging()
    engine = create_engine_from_env()
    run_migrations(engine)
    store = DealStore(engine)
    home = load_stores()[0]
    for recipient in DEMO_RECIPIENTS:
        store.upsert_recipient(recipient["telegram_id"], store_id=home.id, username=recipient["username"])
        store.set_categories(recipient["telegram_id"], recipient["categories"])
    engine.dispose()
    print(f"Seed complete: {len(DEMO_RECIPIENTS)} recipients at {home.name}")


if __name__ == "__main__":
    main()
