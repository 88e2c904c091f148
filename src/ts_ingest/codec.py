"""
Intake payload decoding.

Two body formats are accepted:
- Prometheus remote-write: snappy-compressed protobuf ``WriteRequest``
  (``Content-Encoding: snappy`` / ``Content-Type: application/x-protobuf``),
  as sent by Prometheus agents.
- JSON ``WriteRequest`` documents, optionally gzip or deflate compressed.

Decoding is all-or-nothing: a malformed body yields no records.
"""

from __future__ import annotations

import gzip
import zlib
from typing import List, Optional

import snappy
from google.protobuf.message import DecodeError as ProtobufDecodeError
from pydantic import ValidationError

from .errors import DecodeError
from .models import TimeSeries, WriteRequest
from .remote_write import parse_write_request

GZIP_MAGIC = b"\x1f\x8b"
PROTOBUF_CONTENT_TYPES = ("application/x-protobuf", "application/protobuf")


def decompress_body(body: bytes, content_encoding: Optional[str] = None) -> bytes:
    encoding = (content_encoding or "").strip().lower()
    if encoding == "snappy":
        # snappy block format, as written by Prometheus remote-write
        try:
            return snappy.decompress(body)
        except Exception as e:  # noqa: BLE001
            raise DecodeError(f"could not decompress request body: {e}") from e
    try:
        if encoding == "gzip" or body[:2] == GZIP_MAGIC:
            return gzip.decompress(body)
        if encoding == "deflate":
            return zlib.decompress(body)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"could not decompress request body: {e}") from e
    if encoding in ("", "identity", "gzip", "deflate"):
        return body
    raise DecodeError(f"unsupported content encoding: {content_encoding}")


def is_remote_write(content_encoding: Optional[str], content_type: Optional[str]) -> bool:
    """Protobuf when the type says so, or snappy-encoded without a JSON type."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in PROTOBUF_CONTENT_TYPES:
        return True
    encoding = (content_encoding or "").strip().lower()
    return encoding == "snappy" and ctype != "application/json"


def decode_write_request(
    body: bytes,
    content_encoding: Optional[str] = None,
    content_type: Optional[str] = None,
) -> List[TimeSeries]:
    raw = decompress_body(body, content_encoding)
    if is_remote_write(content_encoding, content_type):
        try:
            return parse_write_request(raw)
        except ProtobufDecodeError as e:
            raise DecodeError(f"invalid remote-write request: {e}") from e
        except ValidationError as e:
            raise DecodeError(f"invalid remote-write request: {e.error_count()} error(s): {e}") from e

    if not raw.strip():
        raise DecodeError("empty request body")
    try:
        return WriteRequest.model_validate_json(raw).timeseries
    except ValidationError as e:
        raise DecodeError(f"invalid write request: {e.error_count()} error(s): {e}") from e
