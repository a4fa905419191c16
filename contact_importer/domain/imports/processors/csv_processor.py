import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import pandas as pd

from ..errors import EmptyFile, UnsupportedFileType

logger = logging.getLogger(__name__)


@dataclass
class ParsedFile:
    """Column headers in file order and rows as header -> text value maps."""
    headers: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)


def detect_file_type(filename: str) -> str:
    """
    Detect file type from filename extension.

    Returns:
        'csv' or 'excel'

    Raises:
        UnsupportedFileType: for any other extension.
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        return "csv"
    if name.endswith((".xlsx", ".xls")):
        return "excel"
    raise UnsupportedFileType("Unsupported file type. Please upload a CSV or Excel file.")


def _strip_headers(df: pd.DataFrame) -> pd.DataFrame:
    df.columns = [str(column).strip() for column in df.columns]
    return df


def _frame_to_parsed_file(df: pd.DataFrame) -> ParsedFile:
    headers = list(df.columns)
    if len(set(headers)) != len(headers):
        duplicated = sorted({h for h in headers if headers.count(h) > 1})
        raise ValueError(f"Column headers must be unique after trimming whitespace; duplicated: {duplicated}")

    df = df.fillna("")
    if not df.empty:
        # Drop rows where every cell is blank
        blank = df.astype(str).apply(lambda col: col.str.strip()).eq("").all(axis=1)
        df = df[~blank]

    rows = [
        {header: "" if value is None else str(value) for header, value in record.items()}
        for record in df.to_dict("records")
    ]
    if not rows:
        raise EmptyFile("No data found in file")
    return ParsedFile(headers=headers, rows=rows)


def process_csv(file_content: bytes) -> ParsedFile:
    """Parse a CSV with a header row; every value is kept as text."""
    try:
        df = pd.read_csv(
            io.BytesIO(file_content),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as exc:
        raise EmptyFile("No data found in file") from exc

    df = _strip_headers(df)
    parsed = _frame_to_parsed_file(df)
    logger.info(f"Processed CSV: {len(parsed.rows)} rows, columns: {parsed.headers}")
    return parsed


def process_excel(file_content: bytes) -> ParsedFile:
    """Parse the first sheet of an Excel workbook; every value is kept as text."""
    try:
        df = pd.read_excel(io.BytesIO(file_content), sheet_name=0, engine="openpyxl", dtype=str, keep_default_na=False)
    except Exception as e:
        raise ValueError(f"Could not read Excel file: {str(e)}") from e

    df = _strip_headers(df)
    parsed = _frame_to_parsed_file(df)
    logger.info(f"Processed Excel sheet: {len(parsed.rows)} rows, columns: {parsed.headers}")
    return parsed


def parse_contact_file(file_content: bytes, file_name: str) -> ParsedFile:
    """Parse an uploaded CSV or Excel file into headers and text rows."""
    file_type = detect_file_type(file_name)
    if not file_content:
        raise EmptyFile("No data found in file")
    if file_type == "csv":
        return process_csv(file_content)
    return process_excel(file_content)
