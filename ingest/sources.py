"""Structured record sources for bulk ingestion.

Every source yields ``(id, content, metadata)`` triples. The first field of a
record (or first column of a row) is the item id; the remaining fields are
joined with a space to form the content unless specific content fields are
named. CSV, TSV and newline-delimited JSON are read one row at a time so large
files are never held in memory; a JSON array is parsed in one go.
"""

import csv
import io
import itertools
import json
import sqlite3
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    Optional,
    Sequence,
    TextIO,
    Tuple,
    Union,
)

from core.errors import UnknownFormatError
from core.logging_setup import get_logger
from core.state import Metadata

FORMATS = ("csv", "tsv", "json", "nl")

Record = Tuple[str, str, Optional[Metadata]]
SkipCallback = Callable[[str, str], None]
Source = Union[str, Path, TextIO]

# Per-row parse failures yielded in place of a row
_ROW_ERRORS = (csv.Error, json.JSONDecodeError)


def _raise_csv_field_limit() -> None:
    # Text columns routinely exceed the 128 KiB default
    limit = sys.maxsize
    while True:
        try:
            csv.field_size_limit(limit)
            return
        except OverflowError:
            limit //= 10


_raise_csv_field_limit()


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return data.decode("latin-1")
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def detect_format(first_line: str) -> str:
    """Guess the structured format from the first non-blank line."""
    stripped = first_line.lstrip()
    if stripped.startswith("["):
        return "json"
    if stripped.startswith("{"):
        return "nl"
    if not stripped:
        raise UnknownFormatError("Cannot detect the format of an empty source")
    return "tsv" if first_line.count("\t") > first_line.count(",") else "csv"


@contextmanager
def _open(source: Source) -> Iterator[TextIO]:
    if isinstance(source, (str, Path)):
        with open(source, "r", encoding="utf-8", newline="") as fp:
            yield fp
    else:
        yield source


def _record_from_mapping(
    data: Dict[str, Any],
    id_field: Optional[str],
    content_fields: Optional[Sequence[str]],
    metadata_fields: Optional[Sequence[str]],
) -> Optional[Record]:
    if not data:
        return None
    keys = list(data.keys())
    key = id_field or keys[0]
    item_id = _as_text(data.get(key)).strip()
    if not item_id:
        return None
    meta_keys = set(metadata_fields or ())
    if content_fields:
        fields = list(content_fields)
    else:
        fields = [k for k in keys if k != key and k not in meta_keys]
    content = " ".join(
        text for text in (_as_text(data.get(k)) for k in fields) if text
    )
    metadata = (
        {k: data[k] for k in metadata_fields if k in data} if metadata_fields else None
    )
    return item_id, content, metadata


def _json_objects(lines: Iterable[str], fmt: str) -> Iterator[Any]:
    if fmt == "json":
        payload = json.loads("".join(lines))
        if not isinstance(payload, list):
            raise UnknownFormatError("A JSON source must be an array of objects")
        yield from payload
        return
    for line in lines:
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError as exc:
            row = exc
        yield row


def _csv_rows(lines: Iterable[str], delimiter: str) -> Iterator[Any]:
    reader = csv.DictReader(lines, delimiter=delimiter)
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            row = exc
        yield row


def iter_records(
    source: Source,
    format: Optional[str] = None,
    *,
    id_field: Optional[str] = None,
    content_fields: Optional[Sequence[str]] = None,
    metadata_fields: Optional[Sequence[str]] = None,
    on_skip: Optional[SkipCallback] = None,
) -> Iterator[Record]:
    """Yield ``(id, content, metadata)`` records from a structured source.

    Args:
        source: Path to a file or an open text stream.
        format: One of ``csv``, ``tsv``, ``json`` or ``nl``; detected from the
            first non-blank line when omitted.
        id_field: Field holding the id; defaults to the first field.
        content_fields: Fields joined as content; defaults to every other field.
        metadata_fields: Fields copied into the record's metadata.
        on_skip: Called with ``(position, reason)`` for records without an id
            and for lines that fail to parse.

    Raises:
        UnknownFormatError: The format is unsupported or cannot be detected.
    """
    logger = get_logger(__name__)
    if format is not None and format not in FORMATS:
        raise UnknownFormatError(
            f"Unsupported format '{format}'. Supported values: {', '.join(FORMATS)}"
        )
    with _open(source) as fp:
        first = ""
        for line in fp:
            if line.strip():
                first = line
                break
        if not first:
            logger.debug("iter_records_empty_source")
            return
        fmt = format or detect_format(first)
        lines = itertools.chain([first], fp)
        logger.debug("iter_records_start", extra={"format": fmt})

        if fmt in ("csv", "tsv"):
            rows: Iterable[Any] = _csv_rows(lines, "\t" if fmt == "tsv" else ",")
        else:
            rows = _json_objects(lines, fmt)

        for position, row in enumerate(rows, start=1):
            if isinstance(row, _ROW_ERRORS):
                logger.warning(
                    "iter_records_bad_line",
                    extra={"position": position, "error": str(row)},
                )
                if on_skip:
                    on_skip(f"#{position}", str(row))
                continue
            if not isinstance(row, dict):
                if on_skip:
                    on_skip(f"#{position}", "record is not an object")
                continue
            record = _record_from_mapping(
                row, id_field, content_fields, metadata_fields
            )
            if record is None:
                logger.warning("iter_records_missing_id", extra={"position": position})
                if on_skip:
                    on_skip(f"#{position}", "record has no id")
                continue
            yield record


def iter_query_rows(
    rows: Iterable[Sequence[Any]], on_skip: Optional[SkipCallback] = None
) -> Iterator[Record]:
    """Yield records from query result rows: first column id, rest content."""
    for position, row in enumerate(rows, start=1):
        values = tuple(row)
        item_id = _as_text(values[0]).strip() if values else ""
        if not item_id:
            if on_skip:
                on_skip(f"#{position}", "row has no id")
            continue
        content = " ".join(text for text in map(_as_text, values[1:]) if text)
        yield item_id, content, None


def iter_sqlite_query(
    db_path: Union[str, Path], sql: str, params: Sequence[Any] = ()
) -> Iterator[Tuple[Any, ...]]:
    """Stream rows of a read-only query against a SQLite database."""
    conn = sqlite3.connect(str(db_path))
    try:
        for row in conn.execute(sql, tuple(params)):
            yield row
    finally:
        conn.close()


def records_from_string(text: str, format: Optional[str] = None, **kwargs) -> Iterator[Record]:
    """Convenience wrapper around :func:`iter_records` for in-memory text."""
    return iter_records(io.StringIO(text), format, **kwargs)
