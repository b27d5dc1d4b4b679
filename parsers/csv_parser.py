"""
CSV / TSV parser.

Delimiter is auto-detected from the header line unless given. All cells
are read as strings and trimmed; blank lines are skipped. Rows with more
cells than the header keep the first cells and are counted in metadata.
"""

from io import StringIO
import structlog

import pandas as pd

from exceptions import MalformedInputError
from models.import_session import ImportFileFormat
from parsers.base import FileParser, ParseOptions, ParseResult, decode_text, unique_columns

logger = structlog.get_logger(__name__)

# Checked in this order; the first with the strictly highest count wins
DELIMITER_CANDIDATES = [";", ",", "\t", "|"]
DEFAULT_DELIMITER = ","


def detect_delimiter(text: str) -> str:
    """
    Pick the delimiter that occurs most often in the first line.

    Falls back to comma when no candidate appears.
    """
    first_line = text.split("\n", 1)[0]

    detected = DEFAULT_DELIMITER
    max_count = 0
    for candidate in DELIMITER_CANDIDATES:
        count = first_line.count(candidate)
        if count > max_count:
            max_count = count
            detected = candidate

    return detected


class CsvParser(FileParser):
    """Delimited text files."""

    format = ImportFileFormat.CSV
    extensions = ("csv", "tsv")
    mime_keywords = ("csv", "tab-separated")

    def parse(
        self,
        content: bytes,
        options: ParseOptions,
        filename: str = "",
    ) -> ParseResult:
        text = decode_text(content, options.encoding)
        header_text = text.split("\n", options.header_row)[-1]
        header_line = next((line for line in header_text.splitlines() if line.strip()), "")
        delimiter = options.delimiter or detect_delimiter(header_line)

        metadata = {"delimiter": delimiter, "encoding": options.encoding}

        if not header_line:
            return ParseResult(metadata=metadata)

        truncated: list[int] = []

        def keep_header_width(fields: list[str]) -> list[str]:
            # Cells beyond the header are dropped, the row is kept
            truncated.append(len(fields))
            return fields[:width]

        try:
            width = len(pd.read_csv(
                StringIO(header_line),
                sep=delimiter,
                dtype=str,
                header=None,
                engine="python",
            ).columns)

            # Header is read as the first data row so every later row,
            # including the first, is checked against its width
            df = pd.read_csv(
                StringIO(text),
                sep=delimiter,
                dtype=str,
                header=None,
                skiprows=options.header_row,
                keep_default_na=False,
                skip_blank_lines=True,
                on_bad_lines=keep_header_width,
                engine="python",
                nrows=options.max_rows + 1 if options.max_rows is not None else None,
            )
        except pd.errors.EmptyDataError:
            return ParseResult(metadata=metadata)
        except (pd.errors.ParserError, ValueError) as e:
            logger.warning("csv_parse_failed", delimiter=delimiter, error=str(e))
            raise MalformedInputError(
                str(e),
                details={"format": "csv", "delimiter": delimiter}
            )

        if truncated:
            logger.warning(
                "csv_extra_cells_dropped",
                rows=len(truncated),
                header_columns=len(df.columns)
            )
            metadata["truncated_rows"] = len(truncated)

        df = df.fillna("")
        header = [
            name if name.strip() else f"Unnamed: {i}"
            for i, name in enumerate(df.iloc[0])
        ]
        df.columns = unique_columns(header)
        df = df.iloc[1:]
        df = df.apply(lambda col: col.str.strip())

        # Rows left empty after trimming
        if len(df.columns) > 0:
            df = df[(df != "").any(axis=1)]

        rows = df.to_dict(orient="records")

        logger.debug(
            "csv_parsed",
            delimiter=delimiter,
            rows=len(rows),
            columns=len(df.columns)
        )

        return ParseResult(rows=rows, columns=list(df.columns), metadata=metadata)
