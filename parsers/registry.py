"""
File parser registry.

Routes an upload to the parser that claims it and wraps decoder failures
in MalformedInputError.
"""

from functools import lru_cache
from typing import Any, Optional
import structlog

from exceptions import AppError, MalformedInputError, UnsupportedFormatError
from models.import_session import ImportFileFormat
from parsers.base import FileParser, ParseOptions, ParseResult, RawRow, file_extension
from parsers.csv_parser import CsvParser
from parsers.excel_parser import ExcelParser
from parsers.json_parser import JsonParser
from parsers.yml_parser import YmlParser

logger = structlog.get_logger(__name__)


class FileParserRegistry:
    """
    Ordered list of parsers.

    A parser is chosen by file extension, or by MIME type when the
    filename has none. Parsers are tried in registration order.
    """

    def __init__(self, parsers: Optional[list[FileParser]] = None):
        self.parsers = parsers if parsers is not None else [
            CsvParser(),
            ExcelParser(),
            YmlParser(),
            JsonParser(),
        ]

    def get_parser(self, filename: str, mime_type: Optional[str] = None) -> FileParser:
        """
        Find the parser for a file.

        The MIME type is only consulted when the filename has no extension.

        Raises:
            UnsupportedFormatError: If no parser claims the file
        """
        extension = file_extension(filename)

        if extension:
            for parser in self.parsers:
                if parser.claims_extension(filename):
                    return parser
            raise UnsupportedFormatError(filename, extension)

        for parser in self.parsers:
            if parser.claims_mime_type(mime_type):
                return parser

        raise UnsupportedFormatError(filename, extension)

    def detect_format(
        self,
        filename: str,
        mime_type: Optional[str] = None
    ) -> Optional[ImportFileFormat]:
        """Format of the file, or None when no parser supports it."""
        try:
            parser = self.get_parser(filename, mime_type)
        except UnsupportedFormatError:
            return None
        return parser.detect_format(filename, mime_type)

    def parse(
        self,
        content: bytes,
        filename: str,
        options: Optional[ParseOptions] = None,
        mime_type: Optional[str] = None
    ) -> ParseResult:
        """
        Parse an uploaded file into normalized rows.

        Args:
            content: Raw file bytes
            filename: Original filename (extension picks the parser)
            options: Delimiter/sheet/header/max_rows/encoding overrides
            mime_type: Upload MIME type, used when the extension is unknown

        Returns:
            ParseResult with rows, columns and format metadata

        Raises:
            UnsupportedFormatError: No parser claims the file
            MalformedInputError: The claiming parser cannot decode it
        """
        parser = self.get_parser(filename, mime_type)
        options = options or ParseOptions()

        logger.info(
            "parsing_file",
            filename=filename,
            parser=type(parser).__name__,
            size_bytes=len(content)
        )

        try:
            result = parser.parse(content, options, filename=filename)
        except AppError:
            raise
        except Exception as e:
            logger.error(
                "file_parse_failed",
                filename=filename,
                parser=type(parser).__name__,
                error=str(e),
                error_type=type(e).__name__
            )
            raise MalformedInputError(
                str(e),
                details={"filename": filename, "error_type": type(e).__name__}
            ) from e

        logger.info(
            "file_parsed",
            filename=filename,
            rows=result.row_count,
            columns=len(result.columns)
        )
        return result

    def get_sample_rows(
        self,
        content: bytes,
        filename: str,
        max_rows: int = 5
    ) -> list[RawRow]:
        """First rows of a file, for previews."""
        return self.parse(content, filename, ParseOptions(max_rows=max_rows)).rows

    def validate_file(self, content: bytes, filename: str) -> dict[str, Any]:
        """
        Check that a file can be parsed.

        Never raises; problems are listed under "errors".
        """
        file_format = self.detect_format(filename)
        try:
            result = self.parse(content, filename)
        except AppError as e:
            return {
                "valid": False,
                "format": file_format,
                "columns": [],
                "row_count": 0,
                "errors": [e.message],
            }

        errors = [] if result.has_data else ["File contains no data rows"]
        return {
            "valid": not errors,
            "format": file_format,
            "columns": result.columns,
            "row_count": result.row_count,
            "errors": errors,
        }


@lru_cache()
def get_parser_registry() -> FileParserRegistry:
    """Shared registry with the default parsers."""
    return FileParserRegistry()
