"""
Catalog file parsers.

Each parser turns an uploaded file into string-only rows sharing one
column set. FileParserRegistry picks the parser for a file.
"""

from parsers.base import (
    RawRow,
    ParseOptions,
    ParseResult,
    FileParser,
)
from parsers.csv_parser import CsvParser, detect_delimiter
from parsers.excel_parser import ExcelParser
from parsers.json_parser import JsonParser
from parsers.yml_parser import YmlParser
from parsers.registry import FileParserRegistry, get_parser_registry

__all__ = [
    "RawRow",
    "ParseOptions",
    "ParseResult",
    "FileParser",
    "CsvParser",
    "detect_delimiter",
    "ExcelParser",
    "JsonParser",
    "YmlParser",
    "FileParserRegistry",
    "get_parser_registry",
]
