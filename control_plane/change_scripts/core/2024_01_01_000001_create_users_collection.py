"""Tenant users and their sessions."""

from pymongo import ASCENDING, DESCENDING, IndexModel


async def up(db):
    await db["users"].create_indexes(
        [
            IndexModel([("email", ASCENDING)], unique=True),
            IndexModel([("is_active", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
        ]
    )
    await db["sessions"].create_indexes(
        [
            IndexModel([("user_id", ASCENDING)]),
            IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0),
        ]
    )
