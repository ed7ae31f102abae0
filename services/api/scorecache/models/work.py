"""Source records scored by the engine.

Works are populated by ingestion pipelines outside this service and are
read-only here. Category columns hold raw 0-10 values; NULL means the data
is missing for that category.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column

from scorecache.stores.postgres import Base, UtcDateTime, utcnow


class Work(Base):
    """A scored work (e.g. a film)."""

    __tablename__ = "works"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(300))
    release_year: Mapped[int | None] = mapped_column(index=True)

    # Raw category values (0-10)
    popular_opinion: Mapped[float | None] = mapped_column()
    industry_recognition: Mapped[float | None] = mapped_column()
    cultural_impact: Mapped[float | None] = mapped_column()
    people_quality: Mapped[float | None] = mapped_column()
    financial_performance: Mapped[float | None] = mapped_column()

    # Evidence behind popular_opinion (used for bayesian shrinkage)
    vote_count: Mapped[int] = mapped_column(default=0)

    # Member of the curated reference list that rankings are validated against
    on_reference_list: Mapped[bool] = mapped_column(default=False, server_default=false(), index=True)

    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Work {self.id} {self.title!r} {self.release_year}>"


class WorkNomination(Base):
    """Nomination of a work by an awarding organization (festival, academy)."""

    __tablename__ = "work_nominations"
    __table_args__ = (UniqueConstraint("work_id", "organization", "year", name="uq_work_nominations"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    work_id: Mapped[int] = mapped_column(ForeignKey("works.id"), index=True)
    organization: Mapped[str] = mapped_column(String(50), index=True)  # e.g. "cannes"
    year: Mapped[int] = mapped_column()
    won: Mapped[bool] = mapped_column(default=False)
