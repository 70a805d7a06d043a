"""Upload trigger contract.

The hosting environment delivers an "object finalized" notification for every file
written to the upload bucket. Only `bucket` and `name` matter to ingestion; every
other key (size, contentType, generation, ...) is passed through untouched.
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from threatfeed.errors import InvalidEventError
from threatfeed.ingestion.blob_fetch import BlobLocation


UPLOAD_EVENT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["bucket", "name"],
    "properties": {
        "bucket": {"type": "string", "minLength": 1, "pattern": "\\S"},
        "name": {"type": "string", "minLength": 1, "pattern": "\\S"},
        "contentType": {"type": "string"},
        "size": {"type": ["string", "integer"]},
    },
    "additionalProperties": True,
}


_VALIDATOR = Draft202012Validator(UPLOAD_EVENT_SCHEMA)


def validate_upload_event(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    errors = []
    for e in sorted(_VALIDATOR.iter_errors(payload), key=lambda x: list(x.path)):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


def parse_upload_event(payload: Any) -> BlobLocation:
    errors = validate_upload_event(payload)
    if errors:
        raise InvalidEventError(errors)
    return BlobLocation(bucket=payload["bucket"].strip(), name=payload["name"])
