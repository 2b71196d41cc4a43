"""Local substring matching over the curated dataset."""

from __future__ import annotations

from typing import Optional, Sequence

from memesearch.curated import curated_memes
from memesearch.models import ResultEntity


def _matches(entity: ResultEntity, needle: str) -> bool:
    if entity.description and needle in entity.description.lower():
        return True
    if any(needle in tag.lower() for tag in entity.tags):
        return True
    return bool(entity.category) and needle in entity.category.lower()


def match_fallback(
    query: str,
    dataset: Optional[Sequence[ResultEntity]] = None,
) -> list[ResultEntity]:
    """Entities whose description, tags or category contain ``query``.

    Case-insensitive. When nothing matches the whole dataset is returned,
    so a failed search still has something to show.
    """
    if dataset is None:
        dataset = curated_memes()
    needle = query.lower()
    matched = [e for e in dataset if _matches(e, needle)]
    return matched if matched else list(dataset)
