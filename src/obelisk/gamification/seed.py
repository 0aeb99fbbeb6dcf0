"""Badge seed data — workshop attendance badges shown on the profile page."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.db.models import Badge

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    {
        "name": "Workshop Attendee",
        "description": "Attended a workshop",
        "criteria": "Check in to any live workshop",
        "color": "#8B5CF6",
    },
    {
        "name": "Workshop Enthusiast",
        "description": "Attended 5 workshops",
        "criteria": "Check in to 5 workshops",
        "color": "#F59E0B",
    },
    {
        "name": "Workshop Master",
        "description": "Attended 10 workshops",
        "criteria": "Check in to 10 workshops",
        "color": "#EF4444",
    },
]


def _insert_for(db: AsyncSession):  # noqa: ANN202
    """ON CONFLICT-capable insert() for the session's dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the badge definitions. Returns number of badges seeded."""
    insert = _insert_for(db)
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        stmt = insert(Badge).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "description": stmt.excluded.description,
                "criteria": stmt.excluded.criteria,
                "color": stmt.excluded.color,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
