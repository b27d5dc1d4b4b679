"""
JSON catalog parser.

Accepts a bare array, an object wrapping the array under products/items/data,
or a single object.
"""

import json
import structlog

from exceptions import MalformedInputError
from models.import_session import ImportFileFormat
from parsers.base import (
    FileParser,
    ParseOptions,
    ParseResult,
    build_result,
    decode_text,
    limit_rows,
)

logger = structlog.get_logger(__name__)

# Wrapper keys checked in order on a top-level object
RECORD_KEYS = ("products", "items", "data")


class JsonParser(FileParser):

    format = ImportFileFormat.JSON
    extensions = ("json",)
    mime_keywords = ("json",)

    def parse(
        self,
        content: bytes,
        options: ParseOptions,
        filename: str = "",
    ) -> ParseResult:
        text = decode_text(content, options.encoding)

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedInputError(
                f"Invalid JSON: {e.msg}",
                details={"line": e.lineno, "column": e.colno}
            )

        records = _extract_records(parsed)
        records = limit_rows(records, options.max_rows)

        # Scalars inside the array still become one row each
        records = [r if isinstance(r, dict) else {"value": r} for r in records]

        result = build_result(
            records,
            metadata={
                "encoding": options.encoding,
                "original_structure": "array" if isinstance(parsed, list) else "object",
            },
            trim=False,
        )

        logger.debug("json_parsed", rows=result.row_count, columns=len(result.columns))
        return result


def _extract_records(parsed) -> list:
    if isinstance(parsed, list):
        return parsed

    if isinstance(parsed, dict):
        for key in RECORD_KEYS:
            if isinstance(parsed.get(key), list):
                return parsed[key]
        return [parsed]

    raise MalformedInputError(
        "JSON must be an array of objects or contain products/items/data array"
    )
