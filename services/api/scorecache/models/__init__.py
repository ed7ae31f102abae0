"""SQLAlchemy ORM models.

Models represent database tables:
- scoring_configurations: Versioned weights/normalization rules
- partition_cache: Durable cache, one row per (partition, configuration)
- works / work_nominations: Read-only source records
- source_changes: Change signals for staleness detection
"""

from scorecache.models.partition_cache import PartitionCache
from scorecache.models.scoring_configuration import ScoringConfiguration
from scorecache.models.source_change import SourceChange
from scorecache.models.work import Work, WorkNomination

__all__ = ["PartitionCache", "ScoringConfiguration", "SourceChange", "Work", "WorkNomination"]
