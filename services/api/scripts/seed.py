#!/usr/bin/env python3
"""Seed database with initial data.

Creates:
- Tables (development databases without migrations)
- Sample works across decades, with festival nominations
- An active default configuration per family, plus the recommended
  bayesian preset as a draft

Seed script is idempotent (skips works/configurations that already exist).

Usage:
    cd services/api
    python -m scripts.seed
"""

import asyncio
import os
import sys

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from scorecache.models import ScoringConfiguration, Work, WorkNomination  # noqa: E402
from scorecache.services.configuration import (  # noqa: E402
    RECOMMENDED_PRESET,
    create_configuration,
    seed_default_configuration,
)
from scorecache.services.families import FAMILIES  # noqa: E402
from scorecache.stores.postgres import close_db, create_tables, get_session, init_db  # noqa: E402

load_dotenv()

# ============================================================
# Sample works
# ============================================================
# Titles on the curated reference list (aggregation validation target)
REFERENCE_TITLES = {
    "Metropolis",
    "Modern Times",
    "Casablanca",
    "Rashomon",
    "La Dolce Vita",
    "The Godfather",
    "Taxi Driver",
    "Wings of Desire",
    "Pulp Fiction",
    "Spirited Away",
    "Parasite",
}

# (title, year, popular_opinion, industry_recognition, cultural_impact,
#  people_quality, financial_performance, vote_count, nominations)

SAMPLE_WORKS = [
    ("Metropolis", 1927, 8.3, 6.0, 9.5, 8.0, None, 180000, []),
    ("Modern Times", 1936, 8.5, 5.0, 8.8, 8.5, 6.0, 250000, []),
    ("Casablanca", 1942, 8.5, 9.0, 9.2, 8.8, 7.5, 600000, ["oscars"]),
    ("Rashomon", 1950, 8.2, 8.5, 8.7, 8.6, None, 180000, ["venice", "oscars"]),
    ("La Dolce Vita", 1960, 8.0, 9.0, 8.9, 8.4, 6.5, 80000, ["cannes", "oscars"]),
    ("The Godfather", 1972, 9.2, 9.5, 9.8, 9.4, 9.0, 2000000, ["oscars"]),
    ("Taxi Driver", 1976, 8.2, 8.8, 9.0, 9.0, 6.8, 900000, ["cannes", "oscars"]),
    ("Wings of Desire", 1987, 8.0, 8.0, 7.5, 8.2, None, 75000, ["cannes"]),
    ("Pulp Fiction", 1994, 8.9, 9.2, 9.6, 9.1, 8.5, 2200000, ["cannes", "oscars"]),
    ("Reservoir Dogs", 1992, 8.3, 6.0, 8.5, 8.7, 5.0, 1100000, ["sundance"]),
    ("Spirited Away", 2001, 8.6, 9.0, 9.0, 8.9, 8.8, 850000, ["berlin", "oscars"]),
    ("Whiplash", 2014, 8.5, 8.5, 7.8, 8.6, 6.5, 950000, ["sundance", "oscars"]),
    ("Parasite", 2019, 8.5, 9.8, 9.0, 8.8, 8.2, 950000, ["cannes", "oscars"]),
    ("Aftersun", 2022, 7.6, 7.5, None, 8.0, 4.0, 120000, ["cannes"]),
]


async def seed_works() -> int:
    async with get_session() as session:
        existing = (await session.execute(select(func.count(Work.id)))).scalar() or 0
        if existing:
            print(f"  works: {existing} present, skipping")
            return 0
        for title, year, po, ir, ci, pq, fp, votes, orgs in SAMPLE_WORKS:
            work = Work(
                title=title,
                release_year=year,
                popular_opinion=po,
                industry_recognition=ir,
                cultural_impact=ci,
                people_quality=pq,
                financial_performance=fp,
                vote_count=votes,
                on_reference_list=title in REFERENCE_TITLES,
            )
            session.add(work)
            await session.flush()
            for org in orgs:
                session.add(WorkNomination(work_id=work.id, organization=org, year=year, won=False))
    print(f"  works: created {len(SAMPLE_WORKS)}")
    return len(SAMPLE_WORKS)


async def seed_configurations() -> None:
    for family in FAMILIES:
        async with get_session() as session:
            active = await seed_default_configuration(session, family)
            print(f"  {family}: active configuration v{active.version} ({active.name})")

            drafts = await session.execute(
                select(ScoringConfiguration).where(
                    ScoringConfiguration.family == family,
                    ScoringConfiguration.name == RECOMMENDED_PRESET["name"],
                )
            )
            if drafts.scalar_one_or_none() is None:
                draft = await create_configuration(session, family=family, **RECOMMENDED_PRESET)
                print(f"  {family}: draft v{draft.version} ({draft.name})")


async def main() -> None:
    await init_db()
    try:
        await create_tables()
        print("Seeding works...")
        await seed_works()
        print("Seeding configurations...")
        await seed_configurations()
        print("Done.")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
