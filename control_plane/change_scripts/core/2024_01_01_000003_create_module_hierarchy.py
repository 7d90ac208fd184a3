"""Module > submodule > component > action hierarchy, keyed by code path."""

from pymongo import ASCENDING, IndexModel


async def up(db):
    await db["modules"].create_indexes(
        [
            IndexModel([("code", ASCENDING)], unique=True),
            IndexModel([("priority", ASCENDING)]),
        ]
    )
    await db["sub_modules"].create_indexes(
        [IndexModel([("module_code", ASCENDING), ("code", ASCENDING)], unique=True)]
    )
    await db["module_components"].create_indexes(
        [
            IndexModel(
                [("module_code", ASCENDING), ("sub_module_code", ASCENDING), ("code", ASCENDING)],
                unique=True,
            )
        ]
    )
    await db["module_component_actions"].create_indexes(
        [
            IndexModel(
                [
                    ("module_code", ASCENDING),
                    ("sub_module_code", ASCENDING),
                    ("component_code", ASCENDING),
                    ("code", ASCENDING),
                ],
                unique=True,
            )
        ]
    )
