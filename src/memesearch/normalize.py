"""Map backend result records onto ResultEntity.

Search hits and listing records share one shape, except that older
backends name the description field ``vlm_description``. Nothing here
invents values: a record without a score stays unscored.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Iterable, Mapping, Optional, Union

from memesearch.models import ResultEntity

RawRecord = Union[Mapping[str, Any], ResultEntity]


def _description(record: Mapping[str, Any]) -> Optional[str]:
    desc = record.get("description")
    if desc is None:
        desc = record.get("vlm_description")
    return desc


def normalize_entity(record: RawRecord) -> ResultEntity:
    """Build a ResultEntity from a raw record without mutating it."""
    if isinstance(record, ResultEntity):
        return dataclasses.replace(record, tags=list(record.tags))

    meme_id = record.get("id")
    url = record.get("url")
    if meme_id in (None, "") or url in (None, ""):
        raise ValueError(f"Result record is missing 'id' or 'url': {dict(record)!r}")

    return ResultEntity(
        id=str(meme_id),
        url=url,
        score=record.get("score"),
        description=_description(record),
        category=record.get("category"),
        tags=list(record.get("tags") or []),
        is_animated=bool(record.get("is_animated", False)),
        width=record.get("width"),
        height=record.get("height"),
    )


def normalize_results(records: Optional[Iterable[RawRecord]]) -> list[ResultEntity]:
    if not records:
        return []
    return [normalize_entity(r) for r in records]
