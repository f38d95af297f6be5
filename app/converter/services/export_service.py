"""
Spreadsheet export for extracted tables (pandas + openpyxl).
"""

import io
import logging
from pathlib import PurePath

import pandas as pd

from ..models import ExtractedTable

logger = logging.getLogger(__name__)

SHEET_NAME = "Sheet1"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def export_filename(original_name: str | None, extension: str = ".xlsx") -> str:
    """Replace the upload's extension: 'statement.pdf' -> 'statement.xlsx'."""
    stem = PurePath(original_name).stem if original_name else ""
    return f"{stem or 'extracted-data'}{extension}"


def table_to_xlsx_bytes(table: ExtractedTable) -> bytes:
    """
    Write the table to a single worksheet, keeping column order.

    Cells are written as text so values like '0042' or '1,200.00' keep
    their printed form.
    """
    df = pd.DataFrame(table.to_records(), columns=table.headers, dtype="string")
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
    logger.info("Exported %d row(s) x %d column(s) to xlsx", len(df), len(table.headers))
    return buffer.getvalue()
