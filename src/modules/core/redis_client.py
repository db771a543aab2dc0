"""Access to the shared Redis connection configured in ``CACHES``."""

from __future__ import annotations

from typing import Any

from django_redis import get_redis_connection


def get_redis_client(alias: str = "default") -> Any:
    """Raw redis-py client behind the django-redis cache ``alias``.

    Locks and settlement markers need primitives (``SET NX PX``, Lua
    scripts, ``SCAN``) that the Django cache API does not expose.
    """
    return get_redis_connection(alias)
