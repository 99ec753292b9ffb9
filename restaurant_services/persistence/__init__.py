"""State persistence: codec, schema migrations, repositories and backups."""

from restaurant_services.persistence.codec import decode_state, encode_state
from restaurant_services.persistence.migrations import CURRENT_SCHEMA_VERSION, migrate
from restaurant_services.persistence.repository import (
    AppRepository,
    JsonFileAppRepository,
    SqlAlchemyAppRepository,
)

__all__ = [
    "AppRepository",
    "CURRENT_SCHEMA_VERSION",
    "JsonFileAppRepository",
    "SqlAlchemyAppRepository",
    "decode_state",
    "encode_state",
    "migrate",
]
