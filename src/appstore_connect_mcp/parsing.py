"""
Decompression and tab-separated parsing of App Store Connect reports.

Apple returns report bodies as gzipped TSV, but depending on content
negotiation the body can arrive already decoded, as text, or as a JSON
error document. Everything is reduced to text first and then split into
a header row and positional data rows.
"""

import gzip
import json
import logging
import zlib
from typing import Any, Dict, List

from .exceptions import MalformedReportError
from .models import ParsedReport

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def _gunzip_or_raw(data: bytes) -> str:
    try:
        return gzip.decompress(data).decode("utf-8", errors="replace")
    except (OSError, EOFError, zlib.error) as e:
        logger.warning(f"decode_payload: gzip decompression failed, using raw bytes: {e}")
        return data.decode("utf-8", errors="replace")


def decode_payload(payload: Any) -> str:
    """
    Reduce a raw report payload to text.

    Gzip is detected by its magic bytes for both bytes and str payloads.
    A corrupt gzip stream falls back to the raw content instead of raising,
    so the caller sees the body as a diagnostic.
    """
    if payload is None:
        return ""

    if isinstance(payload, (bytes, bytearray, memoryview)):
        data = bytes(payload)
        if data[:2] == GZIP_MAGIC:
            return _gunzip_or_raw(data)
        return data.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        if payload[:2] == GZIP_MAGIC.decode("latin-1"):
            # Binary body that was decoded as latin-1 text on the way in
            try:
                return gzip.decompress(payload.encode("latin-1")).decode(
                    "utf-8", errors="replace"
                )
            except (OSError, EOFError, zlib.error, UnicodeEncodeError) as e:
                logger.warning(f"decode_payload: gzip text payload not decodable: {e}")
                return payload
        return payload

    # Already-parsed JSON (typically an error document)
    return json.dumps(payload)


def parse_report(text: str, report_type: str) -> ParsedReport:
    """
    Parse tab-separated report text.

    The first non-blank line is the header row. Each following non-blank
    line is mapped positionally onto the headers; missing trailing fields
    become empty strings.

    Raises:
        MalformedReportError: If the text is not a tab-separated report
    """
    lines = [line.rstrip("\r") for line in (text or "").split("\n") if line.strip()]

    if not lines:
        return ParsedReport(report_type=report_type)

    if "\t" not in lines[0]:
        snippet = lines[0][:120]
        raise MalformedReportError(
            f"{report_type} payload is not a tab-separated report: {snippet}"
        )

    headers = [header.strip() for header in lines[0].split("\t")]

    rows: List[Dict[str, Any]] = []
    for line in lines[1:]:
        values = line.split("\t")
        row = {
            header: (values[idx].strip() if idx < len(values) else "")
            for idx, header in enumerate(headers)
        }
        rows.append(row)

    return ParsedReport(report_type=report_type, headers=headers, rows=rows)
