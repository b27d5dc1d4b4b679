"""
Shared types for catalog file parsers.

Every parser turns raw bytes into the same shape: a list of string-only
rows sharing one column set, plus format-specific metadata.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
import json
import math

from exceptions import MalformedInputError
from models.import_session import ImportFileFormat

RawRow = dict[str, str]


@dataclass
class ParseOptions:
    """Caller overrides for a single parse."""
    delimiter: Optional[str] = None
    sheet: Optional[Union[str, int]] = None
    header_row: int = 0
    max_rows: Optional[int] = None
    encoding: str = "utf-8"


@dataclass
class ParseResult:
    """Normalized rows of an uploaded file."""
    rows: list[RawRow] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def has_data(self) -> bool:
        return len(self.rows) > 0


class FileParser(ABC):
    """Base class for format parsers."""

    format: ImportFileFormat
    extensions: tuple[str, ...] = ()
    mime_keywords: tuple[str, ...] = ()

    def claims_extension(self, filename: str) -> bool:
        return file_extension(filename) in self.extensions

    def claims_mime_type(self, mime_type: Optional[str]) -> bool:
        if not mime_type:
            return False
        mime_type = mime_type.lower()
        return any(keyword in mime_type for keyword in self.mime_keywords)

    def detect_format(self, filename: str, mime_type: Optional[str] = None) -> ImportFileFormat:
        """Concrete format for a claimed file. Parsers covering several formats override."""
        return self.format

    @abstractmethod
    def parse(
        self,
        content: bytes,
        options: ParseOptions,
        filename: str = "",
    ) -> ParseResult:
        """
        Parse file content.

        Raises:
            MalformedInputError: If the content cannot be decoded
        """


# ===================
# HELPERS
# ===================

def file_extension(filename: Optional[str]) -> str:
    """Lower-case extension without the dot ("" when missing)."""
    return Path(filename or "").suffix.lower().lstrip(".")


def decode_text(content: bytes, encoding: str = "utf-8") -> str:
    """Decode bytes, dropping a UTF-8 BOM."""
    if encoding.lower().replace("_", "-") in ("utf-8", "utf8"):
        encoding = "utf-8-sig"
    try:
        return content.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise MalformedInputError(
            f"Cannot decode file as {encoding}",
            details={"encoding": encoding, "original_error": str(e)}
        )


def normalize_value(value: Any, trim: bool = True) -> str:
    """
    Convert any cell value to its string form.

    None/NaN -> "", dicts/lists -> JSON text, booleans -> "true"/"false",
    whole floats lose their ".0".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    text = str(value)
    return text.strip() if trim else text


def build_result(
    records: list[dict[str, Any]],
    metadata: Optional[dict[str, Any]] = None,
    trim: bool = True,
) -> ParseResult:
    """
    Build a ParseResult from loosely shaped records.

    Columns are the union of keys in first-seen order; every row gets
    every column, missing ones as "".
    """
    columns: list[str] = []
    seen: set[str] = set()
    for record in records:
        for key in record:
            name = str(key)
            if name not in seen:
                seen.add(name)
                columns.append(name)

    rows = []
    for record in records:
        values = {str(k): v for k, v in record.items()}
        rows.append({
            column: normalize_value(values.get(column), trim=trim)
            for column in columns
        })

    return ParseResult(rows=rows, columns=columns, metadata=metadata or {})


def limit_rows(items: list, max_rows: Optional[int]) -> list:
    if max_rows is not None and max_rows >= 0:
        return items[:max_rows]
    return items


def unique_columns(names: list[Any]) -> list[str]:
    """Stringify and trim header names, suffixing repeats with .1, .2, ..."""
    result: list[str] = []
    counts: dict[str, int] = {}
    for raw in names:
        name = normalize_value(raw)
        if name in counts:
            counts[name] += 1
            candidate = f"{name}.{counts[name]}"
            while candidate in counts:
                counts[name] += 1
                candidate = f"{name}.{counts[name]}"
            name = candidate
        counts[name] = 0
        result.append(name)
    return result
