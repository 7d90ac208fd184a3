"""Workspace settings, one document per key."""

from datetime import datetime

from pymongo import ASCENDING, IndexModel

DEFAULT_SETTINGS = {
    "timezone": "UTC",
    "date_format": "YYYY-MM-DD",
    "locale": "en",
}


async def up(db):
    settings = db["settings"]
    await settings.create_indexes([IndexModel([("key", ASCENDING)], unique=True)])

    for key, value in DEFAULT_SETTINGS.items():
        await settings.update_one(
            {"key": key},
            {"$setOnInsert": {"key": key, "value": value, "created_at": datetime.utcnow()}},
            upsert=True,
        )
