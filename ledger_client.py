"""HTTP client for the remote claims ledger."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import requests

from errors import ProtocolViolation, TransportFailure
from models import Claim, ClaimType

REQUEST_TIMEOUT_SECONDS = 30

LOGGER = logging.getLogger(__name__)


class RemoteLedgerClient:
    """Existence lookups and claim submission against one ledger base URL.

    No retries: every failure is surfaced to the caller.
    """

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def exists(self, content_id: str, owner: str) -> bool:
        """Return True if a work with this ``id`` attribute and owner is registered."""
        url = f"{self.base_url}/explorer/works"
        params = {"attribute": f"id<>{content_id}", "owner": owner}

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportFailure(f"Existence query failed for id={content_id}: {exc}") from exc

        if not response.ok:
            raise TransportFailure(
                f"Existence query for id={content_id} returned HTTP {response.status_code}:",
                status_code=response.status_code,
                body=response.text,
            )

        body = _json_body(response, context=f"existence query for id={content_id}")
        if not isinstance(body, list):
            raise ProtocolViolation(f"Expected a JSON array from existence query, got: {body!r}")
        return len(body) != 0

    def submit(self, claims: Sequence[Claim]) -> list[dict[str, Any]]:
        """Submit a batch and return the created Work claims."""
        created = self.submit_all(claims)
        return [entry for entry in created if entry.get("type") == ClaimType.WORK]

    def submit_all(self, claims: Sequence[Claim]) -> list[dict[str, Any]]:
        """Submit a batch in one request and return every created claim."""
        url = f"{self.base_url}/user/claims"
        payload = {"signatures": [claim.to_signature() for claim in claims]}

        LOGGER.debug("Posting %s claims to %s", len(claims), url)
        try:
            response = requests.post(
                url,
                headers={"content-type": "text/plain"},
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"Claim submission failed: {exc}") from exc

        if not response.ok:
            raise TransportFailure(
                f"Claim submission returned HTTP {response.status_code}:",
                status_code=response.status_code,
                body=response.text,
            )

        body = _json_body(response, context="claim submission")
        created = body.get("createdClaims") if isinstance(body, dict) else None
        if not isinstance(created, list):
            raise ProtocolViolation(f"Claim submission response has no createdClaims: {body!r}")
        return [entry for entry in created if isinstance(entry, dict)]


def _json_body(response: requests.Response, *, context: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ProtocolViolation(f"Non-JSON response to {context}: {response.text[:200]}") from exc
