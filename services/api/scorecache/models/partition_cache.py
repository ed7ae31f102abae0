"""Partition cache model (durable cache tier).

One row per (partition_key, configuration_id). Rows are written only via
INSERT ... ON CONFLICT DO UPDATE, so a later write for the same key replaces
the earlier one.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from scorecache.stores.postgres import Base, JsonDocument, UtcDateTime, utcnow

UNIQUE_CONSTRAINT_NAME = "uq_partition_cache_partition_configuration"


class PartitionCache(Base):
    """Computed result for one partition under one scoring configuration."""

    __tablename__ = "partition_cache"
    __table_args__ = (
        UniqueConstraint("partition_key", "configuration_id", name=UNIQUE_CONSTRAINT_NAME),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    partition_key: Mapped[str] = mapped_column(String(100), index=True)  # e.g. "1990"
    configuration_id: Mapped[int] = mapped_column(
        ForeignKey("scoring_configurations.id"),
        index=True,
    )

    # Ranked items with per-item score breakdowns
    payload: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)
    # count/average/median/min/max/std_dev
    statistics: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)
    # Free-form ("metadata" is reserved on declarative classes)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, default=dict)

    calculated_at: Mapped[datetime] = mapped_column(UtcDateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<PartitionCache {self.partition_key} cfg={self.configuration_id}>"
