"""Database infrastructure for the retail kernel."""

from retail_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from retail_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
