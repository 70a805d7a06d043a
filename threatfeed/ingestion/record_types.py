"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class RawFeedRecord:
    """One `<message>` entry as it came out of the feed.

    `fields` keeps the whole original entry, including attributes and any
    children the canonical schema does not model.
    """

    uuid: Optional[str] = None
    message: Optional[str] = None
    category: Optional[str] = None
    network: Optional[str] = None
    timestamp: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalRecord:
    """Row written to `darkweb_mentions`. `metadata` is JSON text."""

    uuid: str
    message: str
    category: str
    network: str
    timestamp: datetime
    metadata: str


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestionJob:
    id: int
    file_name: str
    status: JobStatus
    progress: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChunkResult:
    """Per-chunk counts; `errors` holds the RecordError/ChunkTransactionError behind `failed`."""

    success: int = 0
    skipped: int = 0
    failed: int = 0
    errors: Tuple[Exception, ...] = field(default=(), compare=False)

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.failed


@dataclass(frozen=True)
class IngestSummary:
    """Aggregate result of one file run."""

    success: bool
    processed: int
    skipped: int
    failed: int
    job_id: Optional[int] = None
    file_name: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
