"""
Database operations for usage counters.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proxyforge.models.db import UsageCounterDB

VISITS = "visits"
DECKLISTS_RESOLVED = "decklists_resolved"

KNOWN_COUNTERS = (VISITS, DECKLISTS_RESOLVED)


async def increment_counter(session: AsyncSession, name: str, amount: int = 1) -> int:
    """
    Add to a counter, creating it on first use.

    Returns:
        The new value
    """
    counter = await session.get(UsageCounterDB, name)
    if counter is None:
        counter = UsageCounterDB(name=name, value=0)
        session.add(counter)
    counter.value += amount
    await session.flush()
    return counter.value


async def get_counters(session: AsyncSession) -> dict[str, int]:
    """All counters, with known counters reported as 0 until first use."""
    result = await session.execute(select(UsageCounterDB))
    counters = {name: 0 for name in KNOWN_COUNTERS}
    for counter in result.scalars():
        counters[counter.name] = counter.value
    return counters
