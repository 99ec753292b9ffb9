"""
ORM model for persisted restaurant state.

The whole ``RestaurantState`` is stored as one canonical JSON document per
``state_key``, together with the schema version it was written with and a
SHA-256 checksum of the payload.  Loading verifies the checksum before the
payload is migrated and decoded.
"""

from datetime import datetime

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from restaurant_kernel.db.base import Base


class AppStateSnapshot(Base):
    __tablename__ = "app_state_snapshots"

    state_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    saved_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AppStateSnapshot {self.state_key} v{self.schema_version} "
            f"{self.checksum[:12]}>"
        )
