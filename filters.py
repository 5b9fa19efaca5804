"""Deduplication of article records against the remote ledger."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from models import ArticleRecord

LOGGER = logging.getLogger(__name__)


class ExistenceLookup(Protocol):
    def exists(self, content_id: str, owner: str) -> bool: ...


def filter_new_articles(
    records: Sequence[ArticleRecord],
    ledger: ExistenceLookup,
    owner: str,
) -> list[ArticleRecord]:
    """Return the records with no registered claim, in input order.

    A failed lookup propagates and aborts the whole filter: an unknown state
    is never treated as new or as already registered.
    """
    new_records: list[ArticleRecord] = []
    for record in records:
        if ledger.exists(record["id"], owner):
            LOGGER.debug("Skipping already registered article id=%s", record["id"])
            continue
        new_records.append(record)

    LOGGER.info(
        "Deduplication: total=%s, new=%s, registered=%s",
        len(records),
        len(new_records),
        len(records) - len(new_records),
    )
    return new_records
