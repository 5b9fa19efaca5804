"""Feed retrieval and default RSS/Atom field rules."""

from __future__ import annotations

import calendar
import logging
from datetime import UTC, datetime
from typing import Any

import feedparser
import requests

from errors import TransportFailure
from models import FieldRule

REQUEST_TIMEOUT_SECONDS = 20
USER_AGENT = "feed-claims-publisher/0.1 (+feed reader)"

LOGGER = logging.getLogger(__name__)


def fetch_feed(url: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> feedparser.FeedParserDict:
    """Fetch a feed over HTTP(S) and parse it into a generic tree."""
    try:
        response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
        response.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        body = exc.response.text if exc.response is not None else ""
        raise TransportFailure(f"Feed fetch failed for {url}: {exc}", status_code=status, body=body) from exc
    except requests.RequestException as exc:
        raise TransportFailure(f"Feed fetch failed for {url}: {exc}") from exc

    parsed = feedparser.parse(response.content)
    if parsed.get("bozo"):
        # feedparser is lenient; malformed markup still yields whatever entries it recovered.
        LOGGER.warning("Feed %s is not well-formed: %s", url, parsed.get("bozo_exception"))

    LOGGER.info("Feed fetch: url=%s entries=%s", url, len(parsed.entries))
    return parsed


def default_fields(author: str | None = None) -> dict[str, FieldRule]:
    """Field rules for a generic RSS/Atom feed as parsed by feedparser."""
    fields: dict[str, FieldRule] = {
        "id": entry_id,
        "name": lambda entry: _as_str(entry.get("title")),
        "link": lambda entry: _as_str(entry.get("link")),
        "datePublished": entry_published,
        "content": entry_content,
        "tags": lambda entry: ",".join(
            term for term in (_as_str(tag.get("term")) for tag in entry.get("tags", [])) if term
        ),
    }
    if author:
        fields["author"] = author
    else:
        fields["author"] = lambda entry: _as_str(entry.get("author"))
    return fields


def entry_id(entry: Any) -> str:
    """Stable content id of an entry: its guid/id, falling back to the link."""
    value = _as_str(entry.get("id")) or _as_str(entry.get("link"))
    if not value:
        raise ValueError("Feed entry has neither an id nor a link")
    return value


def entry_published(entry: Any) -> str:
    struct = entry.get("published_parsed") or entry.get("updated_parsed")
    if not struct:
        return ""
    return datetime.fromtimestamp(calendar.timegm(struct), tz=UTC).isoformat()


def entry_content(entry: Any) -> str:
    contents = entry.get("content") or []
    for content in contents:
        value = _as_str(content.get("value"))
        if value:
            return value
    return _as_str(entry.get("summary"))


def _as_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""
