"""
Dataset ingestion: raw upload bytes -> list of records.

A record is a plain dict of column name -> raw value. CSV values stay raw
strings (no dtype inference) so the statistics engine decides what counts as
numeric; JSON values keep whatever scalar type the file used.
"""

import csv
import io
import json
import logging
import os
import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from .errors import MalformedDataset, ParseError, UnsupportedFormat

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "50"))

CSV_MEDIA_TYPE = "text/csv"
JSON_MEDIA_TYPE = "application/json"
SUPPORTED_MEDIA_TYPES = (CSV_MEDIA_TYPE, JSON_MEDIA_TYPE)

_EXTENSION_MEDIA_TYPES = {".csv": CSV_MEDIA_TYPE, ".json": JSON_MEDIA_TYPE}
_GENERIC_MEDIA_TYPES = ("", "application/octet-stream")

Record = Dict[str, Any]


@dataclass
class Dataset:
    name: str
    columns: List[str]
    records: List[Record] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.records)

    @property
    def first_record(self) -> Record:
        return self.records[0] if self.records else {}


def resolve_media_type(content_type: Optional[str], filename: Optional[str] = None) -> str:
    """Normalize a client-sent content type, guessing from the extension when it is generic."""
    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type in _GENERIC_MEDIA_TYPES and filename:
        ext = os.path.splitext(filename)[1].lower()
        media_type = _EXTENSION_MEDIA_TYPES.get(ext, media_type)
    return media_type


def max_upload_bytes() -> int:
    return MAX_FILE_SIZE_MB * 1024 * 1024


def _decode(content: Union[bytes, str]) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedDataset(f"Dataset is not valid UTF-8 text: {e}")


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _parse_json(text: str) -> Dataset:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDataset(f"Dataset is not valid JSON: {e}")

    if not isinstance(parsed, list) or not parsed:
        raise MalformedDataset("Dataset is empty or malformed: expected a non-empty JSON array of objects.")

    columns: List[str] = []
    seen = set()
    for idx, row in enumerate(parsed):
        if not isinstance(row, dict):
            raise MalformedDataset(f"Dataset is malformed: item {idx} is not an object.")
        for key, value in row.items():
            if not _is_scalar(value):
                raise MalformedDataset(f"Dataset is malformed: item {idx} has a nested value for '{key}'.")
            if key not in seen:
                seen.add(key)
                columns.append(key)

    return Dataset(name="", columns=columns, records=[dict(row) for row in parsed])


_POSITION_RE = re.compile(r"\b(?:line|row) (\d+)", re.IGNORECASE)


def _is_blank_row(row: List[str]) -> bool:
    # pandas skips whitespace-only lines along with empty ones
    return not row or (len(row) == 1 and not row[0].strip(" \t"))


def _field_counts(text: str) -> List[Tuple[int, int]]:
    """(line number, field count) of every non-blank CSV row, header first."""
    reader = csv.reader(io.StringIO(text))
    try:
        return [(reader.line_num, len(row)) for row in reader if not _is_blank_row(row)]
    except csv.Error as e:
        raise ParseError(str(e), line=reader.line_num or None)


def _too_many_fields(text: str) -> ParseError:
    counts = _field_counts(text)
    expected = counts[0][1] if counts else 0
    for line, n in counts[1:]:
        if n > expected:
            return ParseError(f"Expected {expected} fields in line {line}, saw {n}", line=line)
    return ParseError("Row has more fields than the header")


def _parse_csv(text: str) -> Dataset:
    # A too-long first data row is only a ParserWarning in pandas
    with warnings.catch_warnings():
        warnings.simplefilter("error", pd.errors.ParserWarning)
        try:
            df = pd.read_csv(
                io.StringIO(text),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                index_col=False,
            )
        except pd.errors.EmptyDataError:
            raise MalformedDataset("CSV dataset is empty or malformed.")
        except pd.errors.ParserError as e:
            message = str(e)
            match = _POSITION_RE.search(message)
            raise ParseError(message, line=int(match.group(1)) if match else None)
        except pd.errors.ParserWarning:
            raise _too_many_fields(text)

    if df.empty:
        raise MalformedDataset("CSV dataset is empty or malformed.")

    columns = [str(c) for c in df.columns]
    widths = [n for _, n in _field_counts(text)[1:]]
    if len(widths) != len(df):
        logger.warning("ingest.row_count_mismatch parsed=%d counted=%d", len(df), len(widths))

    records: List[Record] = []
    for idx, row in enumerate(df.itertuples(index=False, name=None)):
        # Short rows keep only the fields they actually have
        width = widths[idx] if idx < len(widths) else len(columns)
        records.append(dict(zip(columns[:width], row)))

    return Dataset(name="", columns=columns, records=records)


def parse_dataset(content: Union[bytes, str], media_type: str, name: str = "Uploaded Dataset") -> Dataset:
    """Parse uploaded CSV or JSON content into a Dataset.

    Raises UnsupportedFormat for any other media type, MalformedDataset for
    empty or non-tabular content, and ParseError for broken CSV structure.
    """
    media_type = resolve_media_type(media_type)
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise UnsupportedFormat(
            f"Unsupported file type '{media_type or 'unknown'}'. Please upload a CSV or JSON file."
        )

    if len(content) > max_upload_bytes():
        raise MalformedDataset(f"Dataset exceeds the {MAX_FILE_SIZE_MB} MB upload limit.")

    text = _decode(content)
    dataset = _parse_json(text) if media_type == JSON_MEDIA_TYPE else _parse_csv(text)
    dataset.name = name
    logger.info(
        "ingest.parsed name=%s media_type=%s rows=%d columns=%d",
        name,
        media_type,
        dataset.row_count,
        len(dataset.columns),
    )
    return dataset
