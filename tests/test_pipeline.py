"""Scenario tests for SubmissionPipeline against an in-memory ledger."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from errors import MappingFailure, ProtocolViolation, TransportFailure
from ledger_client import RemoteLedgerClient
from models import ClaimType, DelayAttributes, FeedConfiguration, PipelineState
from pipeline import SubmissionPipeline
from signing import verify_claim

PRIVATE_KEY = "0c28fca386c7a227600b2fe50b7cae11ec86d3bf1fbe471be89827e19d72aa1d"

FIELDS = {
    "id": lambda entry: entry["guid"],
    "name": lambda entry: entry["title"],
    "link": lambda entry: f"https://blog.example.com/{entry['guid']}",
    "author": "Example Newsroom",
}


class FakeLedger:
    """Registers submitted claims and answers existence queries from them."""

    base_url = "https://ledger.test"

    def __init__(self, registered: set[str] | None = None) -> None:
        self.registered = set(registered or ())
        self.batches: list[list] = []
        self.fail_on: ClaimType | None = None
        self.exists_error: Exception | None = None

    def exists(self, content_id: str, owner: str) -> bool:
        if self.exists_error is not None:
            raise self.exists_error
        return content_id in self.registered

    def submit_all(self, claims):
        claim_type = claims[0].type
        if claim_type == self.fail_on:
            raise TransportFailure("Claim submission returned HTTP 500:", status_code=500, body="boom")
        self.batches.append(list(claims))
        created = []
        for claim in claims:
            assert verify_claim(claim)
            if claim.type == ClaimType.WORK:
                self.registered.add(claim.attributes["id"])
            created.append({"type": str(claim.type), "id": claim.id, "attributes": dict(claim.attributes)})
        return created

    def submit(self, claims):
        return [entry for entry in self.submit_all(claims) if entry["type"] == "Work"]

    def submitted(self, claim_type: ClaimType) -> list:
        return [claim for batch in self.batches for claim in batch if claim.type == claim_type]


def _feed(*guids: str) -> SimpleNamespace:
    return SimpleNamespace(entries=[{"guid": guid, "title": f"Post {guid}"} for guid in guids])


def _config(delays=0, fields=None) -> FeedConfiguration:
    return FeedConfiguration(
        url="https://blog.example.com/feed",
        private_key=PRIVATE_KEY,
        fields=fields or FIELDS,
        profile={"name": "Example Blog"},
        delays=delays,
    )


def _pipeline(ledger, feed=None, **kwargs) -> SubmissionPipeline:
    fetch = kwargs.pop("fetch", MagicMock(return_value=feed if feed is not None else _feed()))
    config = kwargs.pop("config", _config())
    return SubmissionPipeline(config, ledger, fetch=fetch, sleep=kwargs.pop("sleep", MagicMock()), **kwargs)


def test_submits_only_new_works_and_licenses_them() -> None:
    """3 entries, A already registered: works B and C, licenses on their confirmed ids."""
    ledger = FakeLedger(registered={"A"})

    result = _pipeline(ledger, _feed("A", "B", "C")).run()

    assert result.state == PipelineState.DONE
    assert result.articles_total == 3
    assert result.articles_new == 2
    works = ledger.submitted(ClaimType.WORK)
    assert [w.attributes["id"] for w in works] == ["B", "C"]
    licenses = ledger.submitted(ClaimType.LICENSE)
    assert [l.attributes["reference"] for l in licenses] == [w.id for w in works]
    assert len(result.licenses) == 2


def test_phases_submit_in_order_profile_works_licenses() -> None:
    ledger = FakeLedger()

    _pipeline(ledger, _feed("A")).run()

    assert [batch[0].type for batch in ledger.batches] == [
        ClaimType.PROFILE,
        ClaimType.WORK,
        ClaimType.LICENSE,
    ]
    assert len(ledger.batches[0]) == 1
    assert ledger.batches[0][0].attributes == {"name": "Example Blog"}


def test_license_claims_are_self_issued() -> None:
    ledger = FakeLedger()
    config = _config()

    _pipeline(ledger, _feed("A"), config=config).run()

    (license_,) = ledger.submitted(ClaimType.LICENSE)
    owner = config.public_key
    assert license_.attributes["licenseHolder"] == owner
    assert license_.attributes["licenseEmitter"] == owner
    assert license_.attributes["referenceOwner"] == owner
    assert license_.attributes["proofType"] == "LicenseOwner"
    assert license_.public_key == owner


def test_licenses_reference_only_server_confirmed_works() -> None:
    """Works the server did not report as created get no license."""
    ledger = FakeLedger()
    original_submit = ledger.submit
    ledger.submit = lambda claims: original_submit(claims)[:1]

    result = _pipeline(ledger, _feed("A", "B")).run()

    confirmed = {work["id"] for work in result.works}
    references = {l.attributes["reference"] for l in ledger.submitted(ClaimType.LICENSE)}
    assert len(confirmed) == 1
    assert references == confirmed


def test_second_run_is_idempotent() -> None:
    ledger = FakeLedger()
    feed = _feed("A", "B")

    first = _pipeline(ledger, feed).run()
    second = _pipeline(ledger, feed).run()

    assert len(first.works) == 2
    assert second.state == PipelineState.DONE
    assert second.articles_new == 0
    assert len(ledger.submitted(ClaimType.WORK)) == 2
    assert len(ledger.submitted(ClaimType.LICENSE)) == 2


def test_no_new_articles_is_a_successful_no_op() -> None:
    ledger = FakeLedger(registered={"A"})

    result = _pipeline(ledger, _feed("A")).run()

    assert result.ok
    assert result.works == []
    assert [batch[0].type for batch in ledger.batches] == [ClaimType.PROFILE]


def test_feed_transport_failure_aborts_after_single_profile_post() -> None:
    ledger = FakeLedger()
    fetch = MagicMock(side_effect=TransportFailure("Feed fetch failed"))

    result = _pipeline(ledger, fetch=fetch).run()

    assert result.state == PipelineState.ABORTED
    assert result.failed_phase == PipelineState.SCANNING_FEED
    assert isinstance(result.error, TransportFailure)
    assert len(ledger.submitted(ClaimType.PROFILE)) == 1
    assert ledger.submitted(ClaimType.WORK) == []
    assert ledger.submitted(ClaimType.LICENSE) == []


def test_profile_failure_aborts_before_scanning() -> None:
    ledger = FakeLedger()
    ledger.fail_on = ClaimType.PROFILE
    fetch = MagicMock()

    result = _pipeline(ledger, fetch=fetch).run()

    assert result.state == PipelineState.ABORTED
    assert result.failed_phase == PipelineState.POSTING_PROFILE
    fetch.assert_not_called()


def test_existence_failure_aborts_without_submitting_works() -> None:
    ledger = FakeLedger()
    ledger.exists_error = TransportFailure("Existence query failed")

    result = _pipeline(ledger, _feed("A")).run()

    assert result.failed_phase == PipelineState.SCANNING_FEED
    assert ledger.submitted(ClaimType.WORK) == []


def test_mapping_failure_aborts_the_run() -> None:
    ledger = FakeLedger()
    fields = {"id": lambda entry: entry["missing"]}

    result = _pipeline(ledger, _feed("A"), config=_config(fields=fields)).run()

    assert result.failed_phase == PipelineState.SCANNING_FEED
    assert isinstance(result.error, MappingFailure)
    assert ledger.submitted(ClaimType.WORK) == []


def test_work_failure_aborts_before_licenses() -> None:
    ledger = FakeLedger()
    ledger.fail_on = ClaimType.WORK

    result = _pipeline(ledger, _feed("A")).run()

    assert result.failed_phase == PipelineState.SUBMITTING_WORKS
    assert ledger.submitted(ClaimType.LICENSE) == []


def test_license_failure_keeps_registered_works() -> None:
    ledger = FakeLedger()
    ledger.fail_on = ClaimType.LICENSE

    result = _pipeline(ledger, _feed("A", "B")).run()

    assert result.state == PipelineState.ABORTED
    assert result.failed_phase == PipelineState.SUBMITTING_LICENSES
    assert len(result.works) == 2
    assert ledger.registered == {"A", "B"}


def test_rerun_after_license_failure_does_not_duplicate_works() -> None:
    ledger = FakeLedger()
    ledger.fail_on = ClaimType.LICENSE
    _pipeline(ledger, _feed("A", "B")).run()

    ledger.fail_on = None
    result = _pipeline(ledger, _feed("A", "B", "C")).run()

    assert result.ok
    assert [w.attributes["id"] for w in ledger.submitted(ClaimType.WORK)] == ["A", "B", "C"]
    assert [l.attributes["reference"] for l in ledger.submitted(ClaimType.LICENSE)] == [
        ledger.submitted(ClaimType.WORK)[2].id
    ]


def test_delays_precede_each_phase() -> None:
    ledger = FakeLedger()
    events: list[tuple[str, object]] = []
    original_submit_all = ledger.submit_all

    def recording_submit_all(claims):
        events.append(("submit", claims[0].type))
        return original_submit_all(claims)

    ledger.submit_all = recording_submit_all
    sleep = MagicMock(side_effect=lambda seconds: events.append(("sleep", seconds)))
    config = _config(delays=DelayAttributes(before_profile=1, before_works=2, before_licenses=3))

    _pipeline(ledger, _feed("A"), config=config, sleep=sleep).run()

    assert events == [
        ("sleep", 1),
        ("submit", ClaimType.PROFILE),
        ("sleep", 2),
        ("submit", ClaimType.WORK),
        ("sleep", 3),
        ("submit", ClaimType.LICENSE),
    ]


def test_zero_delays_do_not_sleep() -> None:
    sleep = MagicMock()

    _pipeline(FakeLedger(), _feed("A"), sleep=sleep).run()

    sleep.assert_not_called()


def test_async_entry_selector_is_awaited() -> None:
    async def select(parsed):
        return parsed.entries[:1]

    config = FeedConfiguration(
        url="https://blog.example.com/feed",
        private_key=PRIVATE_KEY,
        fields=FIELDS,
        profile={"name": "Example Blog"},
        entries=select,
    )
    ledger = FakeLedger()

    result = _pipeline(ledger, _feed("A", "B"), config=config).run()

    assert result.articles_total == 1


def test_dry_run_posts_nothing() -> None:
    ledger = FakeLedger(registered={"A"})

    result = _pipeline(ledger, _feed("A", "B"), dry_run=True).run()

    assert result.ok
    assert result.articles_new == 1
    assert ledger.batches == []


def _mock_resp(payload) -> MagicMock:
    mock = MagicMock()
    mock.ok = True
    mock.status_code = 200
    mock.text = json.dumps(payload)
    mock.json.return_value = payload
    return mock


def test_missing_created_claims_aborts_before_licenses() -> None:
    """A 2xx body without createdClaims from the works submission is a protocol violation."""
    client = RemoteLedgerClient("https://ledger.test")
    responses = [
        _mock_resp({"createdClaims": [{"type": "Profile", "id": "p"}]}),
        _mock_resp({"status": "ok"}),
    ]

    with patch("ledger_client.requests.get", return_value=_mock_resp([])), \
         patch("ledger_client.requests.post", side_effect=responses) as mock_post:
        result = _pipeline(client, _feed("A", "B")).run()

    assert result.state == PipelineState.ABORTED
    assert result.failed_phase == PipelineState.SUBMITTING_WORKS
    assert isinstance(result.error, ProtocolViolation)
    assert mock_post.call_count == 2


def test_created_work_without_id_is_protocol_violation() -> None:
    ledger = FakeLedger()
    ledger.submit = lambda claims: [{"type": "Work"}]

    result = _pipeline(ledger, _feed("A")).run()

    assert isinstance(result.error, ProtocolViolation)
    assert ledger.submitted(ClaimType.LICENSE) == []


@pytest.mark.parametrize("state", [PipelineState.DONE, PipelineState.ABORTED])
def test_runs_end_in_a_terminal_state(state) -> None:
    ledger = FakeLedger()
    if state == PipelineState.ABORTED:
        ledger.fail_on = ClaimType.WORK

    assert _pipeline(ledger, _feed("A")).run().state == state


def test_failing_entry_selector_aborts_the_run() -> None:
    def select(parsed):
        return parsed["rss"]["channel"][0]["item"]

    config = FeedConfiguration(
        url="https://blog.example.com/feed",
        private_key=PRIVATE_KEY,
        fields=FIELDS,
        profile={"name": "Example Blog"},
        entries=select,
    )
    ledger = FakeLedger()

    result = _pipeline(ledger, {}, config=config).run()

    assert result.state == PipelineState.ABORTED
    assert result.failed_phase == PipelineState.SCANNING_FEED
    assert isinstance(result.error, MappingFailure)
    assert result.error.field == "entries"
    assert isinstance(result.error.__cause__, KeyError)
    assert ledger.submitted(ClaimType.WORK) == []


def test_created_works_are_reported_when_one_lacks_an_id() -> None:
    ledger = FakeLedger()
    original_submit = ledger.submit
    ledger.submit = lambda claims: [*original_submit(claims), {"type": "Work"}]

    result = _pipeline(ledger, _feed("A")).run()

    assert result.failed_phase == PipelineState.SUBMITTING_WORKS
    assert len(result.works) == 2
    assert result.works[0]["attributes"]["id"] == "A"
