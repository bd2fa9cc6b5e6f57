"""
services/web_search_service.py

Google Programmable Search (Custom Search JSON API) wrapper used by the
web-search endpoint, the OpenAI ``web_search`` tool and the ``web_search``
orchestrator command.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings
from app.utils.exceptions import ConfigurationError, WebSearchError

logger = logging.getLogger(__name__)

MAX_RESULTS = 10


async def search_web(query: str, num: int | None = None) -> list[dict[str, Any]]:
    """
    Returns ``[{title, link, snippet}, ...]`` for the query.
    An empty result set is not an error.
    """
    query = (query or "").strip()
    if not query:
        raise WebSearchError("Search query is required", status_code=400)

    if not settings.GOOGLE_SEARCH_API_KEY or not settings.GOOGLE_SEARCH_ENGINE_ID:
        raise ConfigurationError("Google Search API key or Search Engine ID not configured")

    params: dict[str, Any] = {
        "key": settings.GOOGLE_SEARCH_API_KEY,
        "cx":  settings.GOOGLE_SEARCH_ENGINE_ID,
        "q":   query,
    }
    if num:
        params["num"] = max(1, min(int(num), MAX_RESULTS))

    try:
        async with httpx.AsyncClient(timeout=float(settings.WEB_SEARCH_TIMEOUT_SECONDS)) as client:
            resp = await client.get(settings.GOOGLE_SEARCH_URL, params=params)
    except httpx.HTTPError as exc:
        raise WebSearchError(f"Google Search request failed: {exc}") from exc

    if resp.status_code >= 400:
        logger.error("Google Search API error %s: %s", resp.status_code, resp.text[:500])
        raise WebSearchError(
            f"Google Search API failed with status {resp.status_code}: {resp.text[:200]}"
        )

    body = resp.json()
    rows = [
        {
            "title":   item.get("title") or "",
            "link":    item.get("link") or "",
            "snippet": item.get("snippet") or "",
        }
        for item in body.get("items", []) or []
    ]
    logger.info("Web search '%s' returned %d results", query, len(rows))
    return rows
