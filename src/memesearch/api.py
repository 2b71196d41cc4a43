"""Plain (non-streaming) calls to the meme search service."""

from __future__ import annotations

from typing import Optional

import httpx
from tenacity import retry, retry_if_result, stop_after_attempt, wait_exponential

from memesearch.config import auth_headers, get_api_base, get_timeout
from memesearch.models import ResultEntity, ResultPage
from memesearch.normalize import normalize_entity, normalize_results


@retry(
    retry=retry_if_result(lambda r: r.status_code == 429),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
)
def _get(url: str, **kwargs) -> httpx.Response:
    return httpx.get(url, **kwargs)


@retry(
    retry=retry_if_result(lambda r: r.status_code == 429),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
)
def _post(url: str, **kwargs) -> httpx.Response:
    return httpx.post(url, **kwargs)


def _to_page(data: dict) -> ResultPage:
    results = normalize_results(data.get("results"))
    total = data.get("total")
    return ResultPage(results=results, total=total if isinstance(total, int) else len(results))


def search_memes(
    query: str,
    *,
    top_k: int = 20,
    category: Optional[str] = None,
) -> ResultPage:
    """Semantic search without progress updates."""
    body: dict = {"query": query, "top_k": top_k}
    if category:
        body["category"] = category

    resp = _post(
        f"{get_api_base()}/search",
        json=body,
        headers=auth_headers("application/json"),
        timeout=get_timeout(),
    )
    resp.raise_for_status()
    return _to_page(resp.json())


def list_memes(
    *,
    limit: int = 30,
    offset: int = 0,
    category: Optional[str] = None,
) -> ResultPage:
    """Page through the indexed memes, newest first."""
    params: dict = {"limit": limit, "offset": offset}
    if category:
        params["category"] = category

    resp = _get(
        f"{get_api_base()}/memes",
        params=params,
        headers=auth_headers(),
        timeout=get_timeout(),
    )
    resp.raise_for_status()
    return _to_page(resp.json())


def get_categories() -> list[str]:
    resp = _get(
        f"{get_api_base()}/categories",
        headers=auth_headers(),
        timeout=get_timeout(),
    )
    resp.raise_for_status()
    return list(resp.json().get("categories") or [])


def get_meme(meme_id: str) -> ResultEntity:
    """Get details for a single meme."""
    resp = _get(
        f"{get_api_base()}/memes/{meme_id}",
        headers=auth_headers(),
        timeout=get_timeout(),
    )
    resp.raise_for_status()
    return normalize_entity(resp.json())
