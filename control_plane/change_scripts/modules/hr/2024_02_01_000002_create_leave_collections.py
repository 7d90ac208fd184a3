"""Leave types and requests."""

from pymongo import ASCENDING, DESCENDING, IndexModel


async def up(db):
    await db["leave_types"].create_indexes([IndexModel([("code", ASCENDING)], unique=True)])
    await db["leave_requests"].create_indexes(
        [
            IndexModel([("employee_id", ASCENDING), ("starts_on", DESCENDING)]),
            IndexModel([("status", ASCENDING)]),
        ]
    )
