from .cache_status import CacheStatus

__all__ = ["CacheStatus"]
