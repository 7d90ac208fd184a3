"""Employees and departments."""

from pymongo import ASCENDING, IndexModel


async def up(db):
    await db["departments"].create_indexes(
        [
            IndexModel([("code", ASCENDING)], unique=True),
            IndexModel([("parent_id", ASCENDING)]),
        ]
    )
    await db["employees"].create_indexes(
        [
            IndexModel([("employee_number", ASCENDING)], unique=True),
            IndexModel([("user_id", ASCENDING)], sparse=True),
            IndexModel([("department_id", ASCENDING)]),
            IndexModel([("manager_id", ASCENDING)]),
        ]
    )
