"""
Excel parser (.xlsx via openpyxl, .xls via xlrd).

Reads one sheet (by name, index or the first) with every cell as a string.
"""

from io import BytesIO
from typing import Optional
import structlog

import pandas as pd

from exceptions import MalformedInputError
from models.import_session import ImportFileFormat
from parsers.base import (
    FileParser,
    ParseOptions,
    ParseResult,
    file_extension,
    unique_columns,
)

logger = structlog.get_logger(__name__)

# xlsx files are zip archives
ZIP_MAGIC = b"PK"


class ExcelParser(FileParser):
    """Spreadsheet workbooks."""

    format = ImportFileFormat.XLSX
    extensions = ("xlsx", "xls")
    mime_keywords = ("spreadsheet", "excel", "ms-excel")

    def detect_format(self, filename: str, mime_type: Optional[str] = None) -> ImportFileFormat:
        if file_extension(filename) == "xls":
            return ImportFileFormat.XLS
        return ImportFileFormat.XLSX

    def parse(
        self,
        content: bytes,
        options: ParseOptions,
        filename: str = "",
    ) -> ParseResult:
        engine = _pick_engine(content, filename)

        try:
            excel = pd.ExcelFile(BytesIO(content), engine=engine)
        except Exception as e:
            logger.error("excel_read_failed", engine=engine, error=str(e))
            raise MalformedInputError(
                "Failed to read Excel file",
                details={"engine": engine, "original_error": str(e)}
            )

        sheet_names = [str(name) for name in excel.sheet_names]
        sheet_name = _resolve_sheet(sheet_names, options.sheet)

        try:
            df = excel.parse(
                sheet_name,
                header=options.header_row,
                dtype=str,
                nrows=options.max_rows,
            )
        except Exception as e:
            logger.error("excel_sheet_read_failed", sheet=sheet_name, error=str(e))
            raise MalformedInputError(
                f"Failed to read sheet '{sheet_name}'",
                details={"sheet": sheet_name, "original_error": str(e)}
            )

        df = df.dropna(how="all")
        df.columns = unique_columns(list(df.columns))
        df = df.fillna("")
        df = df.apply(lambda col: col.astype(str).str.strip())

        rows = df.to_dict(orient="records")

        logger.debug(
            "excel_parsed",
            sheet=sheet_name,
            rows=len(rows),
            columns=len(df.columns)
        )

        return ParseResult(
            rows=rows,
            columns=list(df.columns),
            metadata={
                "sheet_name": sheet_name,
                "total_sheets": len(sheet_names),
                "all_sheets": sheet_names,
            },
        )


def _pick_engine(content: bytes, filename: str) -> str:
    """openpyxl for xlsx, xlrd for legacy xls. Sniffs bytes when the name says nothing."""
    ext = file_extension(filename)
    if ext == "xls":
        return "xlrd"
    if ext == "xlsx":
        return "openpyxl"
    return "openpyxl" if content[:2] == ZIP_MAGIC else "xlrd"


def _resolve_sheet(sheet_names: list[str], requested) -> str:
    """
    Pick the sheet to read.

    A name must exist; an out-of-range index falls back to the first sheet.
    """
    if not sheet_names:
        raise MalformedInputError("Workbook contains no sheets")

    if isinstance(requested, str):
        if requested not in sheet_names:
            raise MalformedInputError(
                f'Sheet "{requested}" not found',
                details={"sheet": requested, "all_sheets": sheet_names}
            )
        return requested

    if isinstance(requested, int) and 0 <= requested < len(sheet_names):
        return sheet_names[requested]

    return sheet_names[0]
