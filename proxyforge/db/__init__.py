from proxyforge.db.database import get_session, init_db
from proxyforge.db.operations import (
    DECKLISTS_RESOLVED,
    VISITS,
    get_counters,
    increment_counter,
)

__all__ = [
    "DECKLISTS_RESOLVED",
    "VISITS",
    "get_counters",
    "get_session",
    "increment_counter",
    "init_db",
]
