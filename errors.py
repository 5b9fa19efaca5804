"""Error taxonomy for one feed ingest-and-submit cycle."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for failures that end a pipeline phase."""


class TransportFailure(PipelineError):
    """Network error or non-2xx response from the feed or the ledger."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(f"{message} {body}".strip())
        self.status_code = status_code
        self.body = body


class ProtocolViolation(PipelineError):
    """A 2xx response whose body does not have the expected shape."""


class MappingFailure(PipelineError):
    """A field extractor failed while building an article record."""

    def __init__(self, field: str, cause: BaseException | str) -> None:
        super().__init__(f"Failed to map field '{field}': {cause}")
        self.field = field


class SigningFailure(PipelineError):
    """Key derivation or claim signing failed."""
