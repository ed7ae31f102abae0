"""Scoring configuration model.

A versioned set of category weights, normalization rules and missing-data
strategies driving the scoring engine for one computation family.

Lifecycle: draft -> validated -> activated (deployed_at set, draft cleared)
-> optionally deactivated. Activated rows are never edited; changes go into
a new version.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from scorecache.stores.postgres import Base, JsonDocument, UtcDateTime, utcnow


class ScoringConfiguration(Base):
    """Versioned scoring configuration."""

    __tablename__ = "scoring_configurations"
    __table_args__ = (
        # At most one active configuration per family
        Index(
            "uq_scoring_configurations_active_family",
            "family",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Monotonic across all families
    version: Mapped[int] = mapped_column(unique=True, index=True)
    family: Mapped[str] = mapped_column(String(50), index=True)  # e.g. "decades"
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text)

    # {category: weight}, weights sum to 1.0
    category_weights: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)
    normalization_method: Mapped[str] = mapped_column(String(20), default="none")
    normalization_settings: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)
    # {category: neutral|exclude|average|penalize}
    missing_data_strategies: Mapped[dict[str, Any]] = mapped_column(JsonDocument, default=dict)

    is_active: Mapped[bool] = mapped_column(default=False, index=True)
    is_draft: Mapped[bool] = mapped_column(default=True)
    deployed_at: Mapped[datetime | None] = mapped_column(UtcDateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    @property
    def is_locked(self) -> bool:
        """True once the configuration has ever been deployed."""
        return self.deployed_at is not None

    def __repr__(self) -> str:
        state = "active" if self.is_active else ("draft" if self.is_draft else "inactive")
        return f"<ScoringConfiguration v{self.version} {self.family} {state}>"
