"""Core infrastructure components."""

from detective.core.config import Settings, get_settings
from detective.core.database import (
    Base,
    close_db,
    get_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)
from detective.core.logging import (
    get_logger,
    get_request_id,
    set_request_id,
    setup_logging,
)
from detective.core.redis import (
    RedisClient,
    close_redis,
    get_redis,
    init_redis,
)

__all__ = [
    "Base",
    "RedisClient",
    "Settings",
    "close_db",
    "close_redis",
    "get_db",
    "get_engine",
    "get_logger",
    "get_redis",
    "get_request_id",
    "get_session",
    "get_session_factory",
    "get_settings",
    "init_db",
    "init_redis",
    "set_request_id",
    "setup_logging",
]
