"""Threat-feed XML parsing.

Expected layout:

    <threat_feed>
      <messages>
        <message uuid="...">
          <message>...</message>
          <category>...</category>
          <network>...</network>
          <timestamp>...</timestamp>
          ...
        </message>
      </messages>
    </threat_feed>

Attributes are read as plain keys (no prefix), same as child elements.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

import xmltodict

from threatfeed.errors import ParseError
from threatfeed.ingestion.record_types import RawFeedRecord


DEFAULT_ROOT_TAG = "threat_feed"
TEXT_KEY = "#text"


def _as_list(value: Any) -> List[Any]:
    # xmltodict yields a dict for one <message> and a list for several.
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        for item in value:
            t = _text(item)
            if t:
                return t
        return None
    if isinstance(value, dict):
        return _text(value.get(TEXT_KEY))
    s = str(value).strip()
    return s or None


def _entry_fields(entry: Any) -> Dict[str, Any]:
    if entry is None:
        return {}
    if isinstance(entry, dict):
        return dict(entry)
    # <message>plain text</message>
    return {"message": str(entry)}


def _to_raw_record(entry: Any) -> RawFeedRecord:
    fields = _entry_fields(entry)
    message = fields.get("message")
    if message is None:
        message = fields.get("title")
    if message is None:
        # <message uuid="..." category="...">text</message>
        message = fields.get(TEXT_KEY)
    return RawFeedRecord(
        uuid=_text(fields.get("uuid")),
        message=_text(message),
        category=_text(fields.get("category")),
        network=_text(fields.get("network")),
        timestamp=_text(fields.get("timestamp")),
        fields=fields,
    )


def parse_feed(document: bytes, *, root_tag: str = DEFAULT_ROOT_TAG) -> List[RawFeedRecord]:
    """Decode a feed document into its message entries, in document order.

    Raises ParseError for bytes that are not well-formed XML. A well-formed
    document without the expected sections yields an empty list.
    """
    try:
        parsed = xmltodict.parse(document, attr_prefix="", cdata_key=TEXT_KEY)
    except (ExpatError, ValueError, TypeError) as e:
        raise ParseError(f"Malformed feed document: {e}") from e

    root = (parsed or {}).get(root_tag)
    if not isinstance(root, dict):
        return []
    messages = root.get("messages")
    if not isinstance(messages, dict):
        return []
    return [_to_raw_record(entry) for entry in _as_list(messages.get("message"))]
