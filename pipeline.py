"""Three-phase submission pipeline: profile, works, licenses."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from errors import MappingFailure, PipelineError, ProtocolViolation
from feed import fetch_feed
from field_mapper import FieldMapper
from filters import filter_new_articles
from ledger_client import RemoteLedgerClient
from models import ArticleRecord, ClaimType, FeedConfiguration, PipelineRun, PipelineState
from signing import ClaimCodec

LOGGER = logging.getLogger(__name__)

LICENSE_PROOF_TYPE = "LicenseOwner"


class SubmissionPipeline:
    """Run one ingest-and-submit cycle for a feed.

    Phases run in strict order, each preceded by its configured delay. A
    failure while posting the profile, scanning the feed or submitting works
    aborts the run. A failure while submitting licenses aborts too, but the
    works already registered stay registered and are reported in the result.
    Nothing is retried; re-running is safe because registered works are
    filtered out on the next scan.
    """

    def __init__(
        self,
        config: FeedConfiguration,
        ledger: RemoteLedgerClient,
        *,
        fetch: Callable[[str], Any] = fetch_feed,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.codec = ClaimCodec(config.private_key)
        self.mapper = FieldMapper(config.fields)
        self._fetch = fetch
        self._sleep = sleep
        self.dry_run = dry_run

    def run(self) -> PipelineRun:
        result = PipelineRun()
        LOGGER.info("Running feed consumer: feed=%s ledger=%s", self.config.url, self.ledger.base_url)
        LOGGER.info("Submitter public key: %s", self.config.public_key)

        try:
            self._enter(result, PipelineState.POSTING_PROFILE)
            self._post_profile()

            self._enter(result, PipelineState.SCANNING_FEED)
            new_articles = self._scan_feed(result)
            if not new_articles:
                LOGGER.info("No new articles found.")
                return self._finish(result)

            if self.dry_run:
                for article in new_articles:
                    LOGGER.info("[dry-run] Would submit: %s %s", article.get("name", ""), article.get("link", ""))
                return self._finish(result)

            self._enter(result, PipelineState.SUBMITTING_WORKS)
            self._submit_works(result, new_articles)

            self._enter(result, PipelineState.SUBMITTING_LICENSES)
            result.licenses = self._submit_licenses(result.works)
        except PipelineError as exc:
            result.failed_phase = result.state
            result.error = exc
            result.state = PipelineState.ABORTED
            LOGGER.exception("Run aborted during %s: %s", result.failed_phase, exc)
            if result.failed_phase == PipelineState.SUBMITTING_LICENSES:
                LOGGER.warning(
                    "%s works were registered without licenses; they will be skipped on the next run",
                    len(result.works),
                )
            return result

        return self._finish(result)

    def _enter(self, result: PipelineRun, state: PipelineState) -> None:
        delay = {
            PipelineState.POSTING_PROFILE: self.config.delays.before_profile,
            PipelineState.SUBMITTING_WORKS: self.config.delays.before_works,
            PipelineState.SUBMITTING_LICENSES: self.config.delays.before_licenses,
        }.get(state, 0.0)
        if delay > 0:
            LOGGER.info("Waiting %.1fs before %s", delay, state)
            self._sleep(delay)
        result.state = state
        LOGGER.info("Entering %s", state)

    def _finish(self, result: PipelineRun) -> PipelineRun:
        result.state = PipelineState.DONE
        LOGGER.info(
            "Finished. articles=%s new=%s works=%s licenses=%s",
            result.articles_total,
            result.articles_new,
            len(result.works),
            len(result.licenses),
        )
        return result

    def _post_profile(self) -> None:
        if self.dry_run:
            LOGGER.info("[dry-run] Would post profile: %s", dict(self.config.profile))
            return
        claim = self.codec.build(ClaimType.PROFILE, self.config.profile)
        self.ledger.submit([claim])
        LOGGER.info("Profile posted: id=%s", claim.id)

    def _scan_feed(self, result: PipelineRun) -> list[ArticleRecord]:
        parsed = self._fetch(self.config.url)
        try:
            entries = self.config.entries(parsed)
            if inspect.isawaitable(entries):
                entries = asyncio.run(_resolve(entries))
        except Exception as exc:
            raise MappingFailure("entries", exc) from exc

        articles = self.mapper.map_entries(entries)
        result.articles_total = len(articles)
        LOGGER.info("The feed has %s articles. Checking which articles are new...", len(articles))

        new_articles = filter_new_articles(articles, self.ledger, self.config.public_key)
        result.articles_new = len(new_articles)
        if new_articles:
            LOGGER.info("Found %s new articles.", len(new_articles))
        return new_articles

    def _submit_works(self, result: PipelineRun, articles: list[ArticleRecord]) -> None:
        claims = [self.codec.build(ClaimType.WORK, article) for article in articles]
        for article, claim in zip(articles, claims):
            LOGGER.info("Submitting article %s (%s) as claim %s", article.get("name", ""), article.get("link", ""), claim.id)

        created = self.ledger.submit(claims)
        result.works = created
        LOGGER.info("Articles submitted: sent=%s created=%s", len(claims), len(created))
        for work in created:
            if not isinstance(work.get("id"), str) or not work["id"]:
                raise ProtocolViolation(f"Created Work claim has no id: {work!r}")

    def _submit_licenses(self, works: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not works:
            LOGGER.info("No created works to license.")
            return []

        owner = self.config.public_key
        claims = [
            self.codec.build(
                ClaimType.LICENSE,
                {
                    "reference": work["id"],
                    "licenseHolder": owner,
                    "licenseEmitter": owner,
                    "referenceOwner": owner,
                    "proofType": LICENSE_PROOF_TYPE,
                },
            )
            for work in works
        ]
        created = self.ledger.submit_all(claims)
        LOGGER.info("Licenses submitted: sent=%s created=%s", len(claims), len(created))
        return created


async def _resolve(awaitable: Any) -> Any:
    return await awaitable
