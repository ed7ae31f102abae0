"""Error taxonomy.

CacheMissing is deliberately absent: a miss is a normal read outcome and is
returned as ReadStatus.MISSING by the cache reader.
"""


class ScoreCacheError(RuntimeError):
    """Base class for errors raised by this service."""

    code = "INTERNAL_ERROR"


class ConfigurationInvalid(ScoreCacheError):
    """A scoring configuration failed validation or an illegal transition."""

    code = "CONFIGURATION_INVALID"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class NotFound(ScoreCacheError):
    code = "NOT_FOUND"


class UnknownFamily(NotFound):
    def __init__(self, family: str):
        self.family = family
        super().__init__(f"Unknown computation family: {family}")


class PartitionComputeFailed(ScoreCacheError):
    """A unit computation raised. Recorded against that unit only."""

    code = "PARTITION_COMPUTE_FAILED"

    def __init__(self, family: str, partition_key: str, configuration_id: int, reason: str):
        self.family = family
        self.partition_key = partition_key
        self.configuration_id = configuration_id
        self.reason = reason
        super().__init__(
            f"{family}/{partition_key} (configuration {configuration_id}) failed: {reason}"
        )


class CacheWriteConflict(ScoreCacheError):
    """Concurrent writers on one cache key.

    Resolved inside the upsert (replace on conflict); never raised to callers.
    """

    code = "CACHE_WRITE_CONFLICT"
