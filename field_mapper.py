"""Declarative mapping from raw feed entries to article records."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any

from errors import MappingFailure
from models import ArticleRecord, FieldRule

LOGGER = logging.getLogger(__name__)


class FieldMapper:
    """Build one ArticleRecord per raw entry from a set of field rules.

    A rule is either a literal string, copied verbatim, or a callable taking
    the raw entry. Callables may return a string or an awaitable resolving
    to one; awaitables of a whole batch are gathered on a single event loop.
    """

    def __init__(self, rules: Mapping[str, FieldRule]) -> None:
        if "id" not in rules:
            raise ValueError("Field rules must define an 'id' field")
        for key, rule in rules.items():
            if not isinstance(rule, str) and not callable(rule):
                raise ValueError(f"Field rule '{key}' must be a string or a callable")
        self._rules = dict(rules)

    @property
    def fields(self) -> list[str]:
        return list(self._rules)

    def map_entry(self, raw: Any) -> ArticleRecord:
        return self.map_entries([raw])[0]

    def map_entries(self, raws: Iterable[Any]) -> list[ArticleRecord]:
        records: list[dict[str, Any]] = []
        pending: list[tuple[int, str, Awaitable[Any]]] = []

        for index, raw in enumerate(raws):
            record: dict[str, Any] = {}
            for key, rule in self._rules.items():
                if isinstance(rule, str):
                    record[key] = rule
                    continue
                try:
                    value = rule(raw)
                except Exception as exc:
                    _close_pending(pending)
                    raise MappingFailure(key, exc) from exc
                if inspect.isawaitable(value):
                    pending.append((index, key, value))
                else:
                    record[key] = value
            records.append(record)

        if pending:
            results = asyncio.run(_gather([awaitable for _, _, awaitable in pending]))
            for (index, key, _), result in zip(pending, results):
                if isinstance(result, BaseException):
                    raise MappingFailure(key, result) from result
                records[index][key] = result

        for record in records:
            for key, value in record.items():
                if not isinstance(value, str):
                    raise MappingFailure(key, f"expected a string, got {type(value).__name__}")

        LOGGER.debug("Mapped %s feed entries (%s awaited fields)", len(records), len(pending))
        return records


async def _gather(awaitables: list[Awaitable[Any]]) -> list[Any]:
    return await asyncio.gather(*awaitables, return_exceptions=True)


def _close_pending(pending: list[tuple[int, str, Awaitable[Any]]]) -> None:
    """Close coroutines that will never be awaited."""
    for _, _, awaitable in pending:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
