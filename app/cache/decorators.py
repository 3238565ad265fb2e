from functools import wraps
from typing import Callable, Iterable


def cached(key_builder: Callable[..., str], ttl_setting: str | None = None):
    """
    Read-through cache for async service methods. key_builder receives the
    same args/kwargs (including self); the owning object must expose
    ``cache`` and ``settings``. Callers pass ``refresh=True`` to bypass a
    cached value.
    Example:
      @cached(lambda self, start=None, end=None: f"stats:{self.user_id}", "analytics_ttl_seconds")
      async def stats(self, start=None, end=None): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, refresh: bool = False, **kwargs):
            key = key_builder(self, *args, **kwargs)
            ttl = getattr(self.settings, ttl_setting) if ttl_setting else None

            # loader closure calls the wrapped function
            async def loader():
                return await fn(self, *args, **kwargs)

            return await self.cache.get_or_load(key, loader, ttl=ttl, refresh=refresh)

        return wrapper

    return decorator


def invalidates(patterns_builder: Callable[..., Iterable[str]]):
    """Clear the returned key patterns once the wrapped mutation succeeds."""

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            result = await fn(self, *args, **kwargs)
            for pattern in patterns_builder(self, *args, **kwargs):
                self.cache.delete_pattern(pattern)
            return result

        return wrapper

    return decorator
