"""Pool configuration for concurrent chunk copies."""

from pydantic import BaseModel, Field


class PoolConfig(BaseModel):
    """Pool configuration.

    Attributes:
        pool_size: Maximum chunk copies in flight (must be >= 1)
        acquire_timeout_seconds: Fail instead of waiting longer than this for a
            slot. None waits indefinitely.
    """

    model_config = {"extra": "forbid", "frozen": True}

    pool_size: int = Field(2, ge=1, description="Maximum concurrent tasks")
    acquire_timeout_seconds: float | None = Field(None, gt=0, description="Slot acquisition timeout in seconds")
