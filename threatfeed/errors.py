"""Ingestion error taxonomy.

Fatal to a run: FetchError, ParseError, InvalidEventError.
Recovered inside a run: RecordError (one record), ChunkTransactionError (one chunk),
TrackerWriteError (job visibility only).
"""

from __future__ import annotations


class IngestionError(RuntimeError):
    """Base error for the ingestion pipeline."""


class FetchError(IngestionError):
    """The feed blob could not be downloaded."""


class NotFoundError(FetchError):
    """The feed blob does not exist at the given location."""


class ParseError(IngestionError):
    """The feed document is not well-formed XML."""


class RecordError(IngestionError):
    """A single record could not be inserted (constraint/data error)."""

    def __init__(self, uuid: str, message: str):
        super().__init__(f"record {uuid}: {message}")
        self.uuid = uuid


class ChunkTransactionError(IngestionError):
    """A chunk transaction could not proceed or commit and was rolled back."""


class TrackerWriteError(IngestionError):
    """A processing_jobs write failed."""


class InvalidEventError(IngestionError, ValueError):
    """The upload trigger payload does not describe a stored object."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("invalid upload event: " + "; ".join(self.errors))
