"""Source-data change signals used for staleness detection."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from scorecache.stores.postgres import Base, UtcDateTime, utcnow


class SourceChange(Base):
    """A mutation of source data relevant to one partition (or all of them)."""

    __tablename__ = "source_changes"

    id: Mapped[int] = mapped_column(primary_key=True)

    # works | metrics | nominations | people
    domain: Mapped[str] = mapped_column(String(50), index=True)
    # NULL affects every partition
    partition_key: Mapped[str | None] = mapped_column(String(100), index=True)
    entity_id: Mapped[int | None] = mapped_column()
    changed_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SourceChange {self.domain} {self.partition_key or '*'} {self.changed_at}>"
