"""Computation families.

A family is a fixed decomposition of the computation domain into partitions.
Each partition is small enough for one unit job to finish within the unit
time budget; when a partition outgrows it, split the family's partitions
finer here rather than raising the budget.
"""

from dataclasses import dataclass
from enum import Enum

from scorecache.errors import UnknownFamily

# Reserved partition key holding the cross-partition aggregation result
AGGREGATE_PARTITION_KEY = "_aggregate"


class PartitionKind(Enum):
    DECADE = "decade"
    ORGANIZATION = "organization"


@dataclass(frozen=True)
class Family:
    """A named, fixed set of partitions."""

    name: str
    kind: PartitionKind
    partitions: tuple[str, ...]
    ranking_limit: int = 1000
    description: str = ""

    def has_partition(self, partition_key: str) -> bool:
        return partition_key in self.partitions


FAMILIES: dict[str, Family] = {
    "decades": Family(
        name="decades",
        kind=PartitionKind.DECADE,
        partitions=tuple(str(d) for d in range(1920, 2030, 10)),
        ranking_limit=1000,
        description="Likelihood of belonging on the curated list, one partition per release decade",
    ),
    "festivals": Family(
        name="festivals",
        kind=PartitionKind.ORGANIZATION,
        partitions=("cannes", "venice", "berlin", "sundance", "oscars"),
        ranking_limit=250,
        description="Ranking of nominated works, one partition per awarding organization",
    ),
}


def get_family(name: str) -> Family:
    """Look up a family by name.

    Raises:
        UnknownFamily: If the name is not registered.
    """
    family = FAMILIES.get(name)
    if family is None:
        raise UnknownFamily(name)
    return family


def decade_bounds(partition_key: str) -> tuple[int, int]:
    """Inclusive release-year range for a decade partition ("1990" -> 1990..1999)."""
    start = int(partition_key)
    return start, start + 9


def partition_for_year(year: int | None) -> str | None:
    """Decade partition key for a release year."""
    if year is None:
        return None
    return str(year - year % 10)
