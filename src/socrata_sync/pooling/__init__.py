"""Bounded concurrency for chunk copies."""

from socrata_sync.pooling.config import PoolConfig
from socrata_sync.pooling.executor import ConcurrencyLimit, PooledExecutor

__all__ = ["ConcurrencyLimit", "PoolConfig", "PooledExecutor"]
