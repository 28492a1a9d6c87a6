"""Market data caches."""

from .oi_cache import DEFAULT_RETENTION_HOURS, OICache, OIRecord

__all__ = ['DEFAULT_RETENTION_HOURS', 'OICache', 'OIRecord']
