"""Shared typed models for the pipeline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

ArticleRecord = dict[str, str]
FieldRule = str | Callable[[Any], str | Awaitable[str]]
EntrySelector = Callable[[Any], list[Any] | Awaitable[list[Any]]]


class ClaimType(StrEnum):
    PROFILE = "Profile"
    WORK = "Work"
    LICENSE = "License"


class PipelineState(StrEnum):
    IDLE = "Idle"
    POSTING_PROFILE = "PostingProfile"
    SCANNING_FEED = "ScanningFeed"
    SUBMITTING_WORKS = "SubmittingWorks"
    SUBMITTING_LICENSES = "SubmittingLicenses"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass(frozen=True, slots=True)
class DelayAttributes:
    """Seconds to wait before entering each submission phase."""

    before_profile: float = 0.0
    before_works: float = 0.0
    before_licenses: float = 0.0

    def __post_init__(self) -> None:
        for name in ("before_profile", "before_works", "before_licenses"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

    @classmethod
    def coerce(cls, value: DelayAttributes | Mapping[str, float] | float | None) -> DelayAttributes:
        """Build delays from an instance, a per-phase mapping, or a scalar.

        A scalar is broadcast to all three phases; a mapping may omit keys,
        which default to zero.
        """
        if value is None:
            return cls()
        if isinstance(value, DelayAttributes):
            return value
        if isinstance(value, Mapping):
            return cls(
                before_profile=float(value.get("before_profile", 0.0)),
                before_works=float(value.get("before_works", 0.0)),
                before_licenses=float(value.get("before_licenses", 0.0)),
            )
        seconds = float(value)
        return cls(before_profile=seconds, before_works=seconds, before_licenses=seconds)


def _default_entries(parsed: Any) -> list[Any]:
    return list(parsed.entries)


@dataclass(frozen=True)
class FeedConfiguration:
    """Immutable per-run configuration of one feed.

    The public key is derived from ``private_key`` once, at construction.
    """

    url: str
    private_key: str = field(repr=False)
    fields: Mapping[str, FieldRule]
    profile: Mapping[str, str]
    delays: DelayAttributes = field(default_factory=DelayAttributes)
    entries: EntrySelector = _default_entries
    public_key: str = field(init=False)

    def __post_init__(self) -> None:
        # signing imports this module.
        from signing import derive_public_key  # noqa: PLC0415

        object.__setattr__(self, "delays", DelayAttributes.coerce(self.delays))
        object.__setattr__(self, "public_key", derive_public_key(self.private_key))


@dataclass(frozen=True, slots=True)
class Claim:
    """A signed, content-addressed claim ready for submission."""

    type: ClaimType
    public_key: str
    attributes: Mapping[str, str]
    message: bytes
    id: str
    signature: str

    def to_signature(self) -> dict[str, str]:
        """Return the wire form expected by the claims endpoint."""
        return {"message": self.message.hex(), "signature": self.signature}


@dataclass
class PipelineRun:
    """Outcome of one pipeline cycle."""

    state: PipelineState = PipelineState.IDLE
    failed_phase: PipelineState | None = None
    error: Exception | None = None
    articles_total: int = 0
    articles_new: int = 0
    works: list[dict[str, Any]] = field(default_factory=list)
    licenses: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.DONE
