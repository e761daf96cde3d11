"""Turn an uploaded document into columns and rows.

Delimited text, spreadsheets and DOCX tables are read locally. PDF text, DOCX
prose and plain text go through the AI table extractor.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time
from pathlib import PurePath
from typing import Any

import docx
import openpyxl
import pymupdf
import xlrd

from cadence.config import Settings, get_settings
from cadence.errors import DomainValidationError, ExtractionError
from cadence.llm.router import AIService
from cadence.types import ExtractionResult

logger = logging.getLogger(__name__)

DELIMITED_SUFFIXES = {".csv": ",", ".tsv": "\t"}
UNSUPPORTED_SUFFIXES = {".doc"}


def decode_text(raw: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode("latin-1")


def unique_columns(headers: Iterable[Any]) -> list[str]:
    """Blank headers become ``Column N``; repeated headers get `` (2)``, `` (3)``..."""
    columns: list[str] = []
    seen: set[str] = set()
    for position, header in enumerate(headers, start=1):
        base = str(header or "").strip() or f"Column {position}"
        candidate = base
        suffix = 2
        while candidate in seen:
            candidate = f"{base} ({suffix})"
            suffix += 1
        seen.add(candidate)
        columns.append(candidate)
    return columns


def table_from_cells(cells: Sequence[Sequence[Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    """First non-empty line is the header; blank data lines are dropped."""
    lines = [list(line) for line in cells if any(str(cell or "").strip() for cell in line)]
    if not lines:
        return [], []

    columns = unique_columns(lines[0])
    rows: list[dict[str, Any]] = []
    for line in lines[1:]:
        padded = line + [""] * (len(columns) - len(line))
        rows.append({column: str(value or "").strip() for column, value in zip(columns, padded)})
    return columns, rows


class DocumentExtractor:
    def __init__(self, ai: AIService | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.ai = ai or AIService(self.settings)

    def extract(self, *, content: bytes, filename: str) -> ExtractionResult:
        if not content:
            raise DomainValidationError("Uploaded file is empty", code="EMPTY_UPLOAD")
        if len(content) > self.settings.max_upload_bytes:
            raise DomainValidationError(
                f"File exceeds the {self.settings.max_upload_bytes} byte upload limit",
                code="FILE_TOO_LARGE",
            )

        suffix = PurePath(filename or "").suffix.lower()
        if suffix in UNSUPPORTED_SUFFIXES:
            raise ExtractionError(
                f"Unsupported file type '{suffix}'. Upload CSV, TSV, XLSX, XLS, DOCX, PDF or text."
            )

        if suffix in DELIMITED_SUFFIXES:
            result = self._from_delimited(content, DELIMITED_SUFFIXES[suffix])
        elif suffix == ".xlsx":
            result = self._from_xlsx(content)
        elif suffix == ".xls":
            result = self._from_xls(content)
        elif suffix == ".docx":
            result = self._from_docx(content, filename)
        elif suffix == ".pdf":
            result = self._from_text(self._pdf_text(content), filename, source="pdf")
        else:
            result = self._from_text(decode_text(content), filename, source="text")

        if not result.columns or not result.rows:
            raise ExtractionError("No tabular data found in document")

        result.metadata.setdefault("filename", filename)
        result.metadata["row_count"] = len(result.rows)
        result.metadata["column_count"] = len(result.columns)
        logger.info(
            "Extracted %s rows x %s columns from %s (source=%s)",
            len(result.rows),
            len(result.columns),
            filename,
            result.metadata.get("source"),
        )
        return result

    def _from_delimited(self, content: bytes, default_delimiter: str) -> ExtractionResult:
        text = decode_text(content)
        delimiter = default_delimiter
        if default_delimiter == ",":
            try:
                delimiter = csv.Sniffer().sniff(text[:4096], delimiters=",;\t|").delimiter
            except csv.Error:
                delimiter = ","

        columns, rows = table_from_cells(list(csv.reader(io.StringIO(text), delimiter=delimiter)))
        return ExtractionResult(
            description="Delimited table",
            columns=columns,
            rows=rows,
            metadata={"source": "delimited", "delimiter": delimiter},
        )

    def _from_xlsx(self, content: bytes) -> ExtractionResult:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except Exception as exc:
            raise ExtractionError(f"Failed to open XLSX: {exc}") from exc

        try:
            sheets = [
                (sheet.title, [[cell_text(value) for value in row] for row in sheet.iter_rows(values_only=True)])
                for sheet in workbook.worksheets
            ]
        finally:
            workbook.close()
        return _first_sheet_table(sheets, source="xlsx")

    def _from_xls(self, content: bytes) -> ExtractionResult:
        try:
            book = xlrd.open_workbook(file_contents=content)
        except Exception as exc:
            raise ExtractionError(f"Failed to open XLS: {exc}") from exc

        sheets: list[tuple[str, list[list[str]]]] = []
        for sheet in book.sheets():
            cells = []
            for index in range(sheet.nrows):
                line = []
                for cell in sheet.row(index):
                    value = cell.value
                    if cell.ctype == xlrd.XL_CELL_DATE:
                        value = xlrd.xldate_as_datetime(value, book.datemode)
                    line.append(cell_text(value))
                cells.append(line)
            sheets.append((sheet.name, cells))
        return _first_sheet_table(sheets, source="xls")

    def _from_docx(self, content: bytes, filename: str) -> ExtractionResult:
        try:
            document = docx.Document(io.BytesIO(content))
        except Exception as exc:
            raise ExtractionError(f"Failed to open DOCX: {exc}") from exc

        for table in document.tables:
            cells = [[cell.text for cell in row.cells] for row in table.rows]
            columns, rows = table_from_cells(cells)
            if columns and rows:
                return ExtractionResult(
                    description="Table from DOCX",
                    columns=columns,
                    rows=rows,
                    metadata={"source": "docx_table", "table_count": len(document.tables)},
                )

        text = "\n".join(paragraph.text for paragraph in document.paragraphs if paragraph.text.strip())
        return self._from_text(text, filename, source="docx")

    @staticmethod
    def _pdf_text(content: bytes) -> str:
        try:
            document = pymupdf.open(stream=content, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(f"Failed to open PDF: {exc}") from exc

        try:
            pages = [page.get_text("text") for page in document]
        finally:
            document.close()
        return "\n".join(page.strip() for page in pages if page.strip())

    def _from_text(self, text: str, filename: str, *, source: str) -> ExtractionResult:
        if not text.strip():
            raise ExtractionError("Document contains no readable text")

        result = self.ai.extract_table(document_text=text, filename=filename)
        columns = unique_columns(result.columns)
        renamed = dict(zip(result.columns, columns))
        rows = [
            {renamed.get(key, key): value for key, value in row.items()}
            for row in result.rows
            if any(str(value or "").strip() for value in row.values())
        ]
        return ExtractionResult(
            description=result.description,
            columns=columns,
            rows=rows,
            metadata={"source": source, "extractor": "llm"},
        )


def cell_text(value: Any) -> str:
    """Spreadsheet cell as text; midnight datetimes become ISO dates and whole floats lose ``.0``."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.time() == time.min:
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _first_sheet_table(sheets: Sequence[tuple[str, list[list[str]]]], *, source: str) -> ExtractionResult:
    for name, cells in sheets:
        columns, rows = table_from_cells(cells)
        if columns and rows:
            return ExtractionResult(
                description=f"Sheet {name}",
                columns=columns,
                rows=rows,
                metadata={"source": source, "sheet": name, "sheet_count": len(sheets)},
            )
    return ExtractionResult(metadata={"source": source, "sheet_count": len(sheets)})
