from typing import Any, Awaitable, Callable, Iterable

from app.cache.keys import CacheKeys
from app.cache.layer import CacheLayer


async def lookup_many(
    cache: CacheLayer,
    kind: str,
    ids: Iterable[Any],
    fetch: Callable[[list], Awaitable[dict]],
    ttl: float | None = None,
) -> dict:
    """
    Resolve dimension ids through the cache; every id not cached is fetched
    with one ``fetch`` call, so a page of rows costs at most one round trip
    per reference table.
    """
    found = {}
    missing = []
    for ident in {i for i in ids if i is not None}:
        value = cache.get(CacheKeys.lookup(kind, ident))
        if value is None:
            missing.append(ident)
        else:
            found[ident] = value

    if missing:
        fetched = await fetch(missing)
        for ident, value in fetched.items():
            cache.set(CacheKeys.lookup(kind, ident), value, ttl)
        found.update(fetched)
    return found
