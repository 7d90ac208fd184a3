"""Roles, permissions and the assignments between them."""

from pymongo import ASCENDING, IndexModel


async def up(db):
    await db["roles"].create_indexes(
        [IndexModel([("name", ASCENDING), ("guard_name", ASCENDING)], unique=True)]
    )
    await db["permissions"].create_indexes(
        [IndexModel([("name", ASCENDING), ("guard_name", ASCENDING)], unique=True)]
    )
    await db["role_has_permissions"].create_indexes(
        [IndexModel([("role_id", ASCENDING), ("permission_id", ASCENDING)], unique=True)]
    )
    await db["model_has_roles"].create_indexes(
        [IndexModel([("model_id", ASCENDING), ("role_id", ASCENDING)], unique=True)]
    )
