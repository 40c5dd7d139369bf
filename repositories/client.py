"""
Supabase client initialization and query execution.

This module contains *only* the connection setup and the single choke point
through which every repository query is executed. Repositories never call
`.execute()` themselves, so store failures surface uniformly as
StoreUnavailableError.
"""

from __future__ import annotations

from typing import Any, Dict, List

import httpx
from postgrest.exceptions import APIError

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import AsyncClient, acreate_client  # type: ignore[import-not-found]

from config import Settings
from domain.errors import StoreUnavailableError


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """
    Create the async Supabase client for this process.

    Raises RuntimeError when SUPABASE_URL or SUPABASE_KEY is not configured.
    """

    url, key = settings.require_supabase_credentials()
    return await acreate_client(url, key)


async def execute_query(query: Any, *, action: str) -> List[Dict[str, Any]]:
    """
    Execute a PostgREST query builder and return its rows.

    `action` describes the operation for error messages ("fetch piece", ...).
    Any transport or API failure is raised as StoreUnavailableError.
    """

    try:
        response = await query.execute()
    except (APIError, httpx.HTTPError) as exc:
        raise StoreUnavailableError(action, exc) from exc

    error = getattr(response, "error", None)
    if error:
        raise StoreUnavailableError(action, error)

    return list(getattr(response, "data", None) or [])


__all__ = ["create_supabase_client", "execute_query"]
