"""Turn a search query into seed URLs via the site's topsearch endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .config import ProxyConfig
from .consts import BASE_URL, SEARCH_ENDPOINT, SearchType
from .reliability import EnhancedError, ErrorCategory, ErrorSeverity, RecoveryStrategy

HEADERS = {
    "accept": "application/json",
    "user-agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
}

# search type -> topsearch payload list key
_RESULT_KEYS = {
    SearchType.USER: "users",
    SearchType.HASHTAG: "hashtags",
    SearchType.PLACE: "places",
}


def _user_url(entry: Dict[str, Any]) -> Optional[str]:
    username = (entry.get("user") or {}).get("username")
    return f"{BASE_URL}/{username}/" if username else None


def _hashtag_url(entry: Dict[str, Any]) -> Optional[str]:
    name = (entry.get("hashtag") or {}).get("name")
    return f"{BASE_URL}/explore/tags/{quote(name)}/" if name else None


def _place_url(entry: Dict[str, Any]) -> Optional[str]:
    place = entry.get("place") or {}
    location = place.get("location") or {}
    pk = location.get("pk")
    if not pk:
        return None
    return f"{BASE_URL}/explore/locations/{pk}/{place.get('slug') or ''}"


_URL_BUILDERS = {
    SearchType.USER: _user_url,
    SearchType.HASHTAG: _hashtag_url,
    SearchType.PLACE: _place_url,
}


def urls_from_results(payload: Dict[str, Any], search_type: SearchType, limit: int) -> List[str]:
    """Pick up to ``limit`` unique URLs of the requested kind from a topsearch payload."""
    urls: List[str] = []
    for entry in payload.get(_RESULT_KEYS[search_type]) or []:
        url = _URL_BUILDERS[search_type](entry) if isinstance(entry, dict) else None
        if url and url not in urls:
            urls.append(url)
        if len(urls) >= limit:
            break
    return urls


async def search_urls(
    query: str,
    search_type: SearchType,
    limit: int,
    *,
    proxy: Optional[ProxyConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Resolve ``query`` to seed URLs. Network and HTTP failures abort the run."""
    logger = logger or logging.getLogger("igcrawler.search")
    search_type = SearchType(search_type)
    params = {"context": "blended", "query": query}

    async def fetch(cl: httpx.AsyncClient) -> Dict[str, Any]:
        response = await cl.get(SEARCH_ENDPOINT, params=params, headers=HEADERS)
        response.raise_for_status()
        return response.json()

    try:
        if client is not None:
            payload = await fetch(client)
        else:
            timeout = httpx.Timeout(30.0, connect=15.0)
            async with httpx.AsyncClient(
                proxy=proxy.to_url() if proxy else None,
                follow_redirects=True,
                timeout=timeout,
            ) as cl:
                payload = await fetch(cl)
    except (httpx.HTTPError, ValueError) as e:
        raise EnhancedError(
            f"Search for '{query}' failed: {e}",
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.HIGH,
            recovery_strategy=RecoveryStrategy.FAIL,
            cause=e,
        ) from e

    urls = urls_from_results(payload if isinstance(payload, dict) else {}, search_type, limit)
    logger.info(f"Search '{query}' ({search_type.value}) found {len(urls)} URLs")
    return urls
