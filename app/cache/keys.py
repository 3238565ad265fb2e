"""Cache key catalogue.

Every derived key family here must be invalidated at each mutation site
that can change it; see ``user_scoped_patterns``.
"""

from datetime import date, datetime


def _part(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class CacheKeys:
    DASHBOARD_STATS = "dashboard:stats"
    TASKS_LIST = "tasks:list"
    TASKS_CATEGORIES = "tasks:categories"
    TASKS_STATUSES = "tasks:statuses"
    ANALYTICS = "analytics"

    LOOKUP_STATUS = "lookup:status"
    LOOKUP_STATUS_NAME = "lookup:status-name"
    LOOKUP_CATEGORY = "lookup:category"
    LOOKUP_DATE = "lookup:date"
    DIM_DATE = "dim_date"
    USER = "user"

    @staticmethod
    def dashboard_stats(user_id, start=None, end=None) -> str:
        return f"{CacheKeys.DASHBOARD_STATS}:{user_id}:{_part(start)}:{_part(end)}"

    @staticmethod
    def tasks_list(user_id, *parts) -> str:
        return ":".join([CacheKeys.TASKS_LIST, str(user_id), *(_part(p) for p in parts)])

    @staticmethod
    def analytics(user_id, name: str, *parts) -> str:
        return ":".join(
            [CacheKeys.ANALYTICS, str(user_id), name, *(_part(p) for p in parts)]
        )

    @staticmethod
    def lookup(kind: str, ident) -> str:
        return f"{kind}:{ident}"

    @staticmethod
    def dim_date(day: date) -> str:
        return f"{CacheKeys.DIM_DATE}:{day.isoformat()}"

    @staticmethod
    def user(external_id: str) -> str:
        return f"{CacheKeys.USER}:{external_id}"


def user_scoped_patterns(user_id) -> list[str]:
    """Keys derived from one user's tasks."""
    return [
        f"{CacheKeys.TASKS_LIST}:{user_id}:*",
        f"{CacheKeys.DASHBOARD_STATS}:{user_id}:*",
        f"{CacheKeys.ANALYTICS}:{user_id}:*",
    ]
