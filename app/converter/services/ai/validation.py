"""
Validation and normalization of extraction service responses.

Handles:
- Unwrapping the accepted response shapes ({headers, rows}, {tabularData},
  JSON strings, bare row-object arrays)
- Building a uniform ExtractedTable (missing cells become "")
- Classifying empty and malformed responses
"""

import json
import logging
from typing import Any

from ...exceptions import EmptyResultError, InvalidShapeError
from ...models import ExtractedTable

logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = "No tabular data found in the PDF. Please try another file."
INVALID_SHAPE_MESSAGE = "Extracted data is not in a valid table format. Please check the PDF."

# Raw payloads that mean "nothing found"
_EMPTY_PAYLOADS = {"", "[]", "{}"}


def _to_cell(value: Any) -> str:
    """Coerce a scalar JSON value to a cell string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (nested value in cell)")


def _unique_headers(headers: list[Any]) -> list[str]:
    """Blank headers become 'Column N'; repeats get ' (2)', ' (3)' suffixes."""
    result: list[str] = []
    seen: dict[str, int] = {}
    for position, header in enumerate(headers, start=1):
        name = _to_cell(header).strip() or f"Column {position}"
        if name in seen:
            seen[name] += 1
            candidate = f"{name} ({seen[name]})"
            while candidate in seen:
                seen[name] += 1
                candidate = f"{name} ({seen[name]})"
            name = candidate
        seen[name] = 1
        result.append(name)
    return result


def normalize_headers_and_rows(headers: Any, rows: Any) -> ExtractedTable:
    """
    Pair each header with the cell at the same position in every row.

    Rows shorter than the header list are padded with empty strings; extra
    trailing cells are dropped. An empty header list yields an empty table.

    Raises:
        InvalidShapeError: If headers/rows are not lists of lists of scalars.
    """
    if not isinstance(headers, list) or not isinstance(rows, list):
        raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (headers and rows must be lists)")
    if not headers:
        return ExtractedTable()

    names = _unique_headers(headers)
    table_rows: list[dict[str, str]] = []
    for index, row in enumerate(rows):
        if not isinstance(row, list):
            raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (row {index} is not a list)")
        if len(row) > len(names):
            logger.warning(
                "Row %d has %d cells for %d headers; dropping extras",
                index,
                len(row),
                len(names),
            )
        cells = [_to_cell(cell) for cell in row[: len(names)]]
        cells.extend([""] * (len(names) - len(cells)))
        table_rows.append(dict(zip(names, cells)))

    return ExtractedTable(headers=names, rows=table_rows)


def normalize_records(records: list[Any]) -> ExtractedTable:
    """
    Build a table from an array of row objects.

    Headers are the keys in first-seen order; rows lacking a key get "".

    Raises:
        InvalidShapeError: If an item is not an object or holds nested values.
    """
    headers: list[str] = []
    seen: set[str] = set()
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (row {index} is not an object)")
        for key in record:
            if key not in seen:
                seen.add(key)
                headers.append(key)

    rows = [
        {header: _to_cell(record.get(header)) for header in headers}
        for record in records
    ]
    return ExtractedTable(headers=headers, rows=rows)


def _parse_shape(raw: Any) -> ExtractedTable:
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        text = text.strip()
        if text in _EMPTY_PAYLOADS:
            raise EmptyResultError(EMPTY_RESULT_MESSAGE)
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse extraction response: %s", text[:500])
            raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (invalid JSON: {e})") from e
        return _parse_shape(decoded)

    if isinstance(raw, dict):
        if not raw:
            raise EmptyResultError(EMPTY_RESULT_MESSAGE)
        if "tabularData" in raw:
            return _parse_shape(raw["tabularData"])
        if "headers" in raw and "rows" in raw:
            return normalize_headers_and_rows(raw["headers"], raw["rows"])
        raise InvalidShapeError(
            f"{INVALID_SHAPE_MESSAGE} (unexpected keys: {sorted(raw)[:5]})"
        )

    if isinstance(raw, list):
        return normalize_records(raw)

    raise InvalidShapeError(f"{INVALID_SHAPE_MESSAGE} (got {type(raw).__name__})")


def parse_tabular_response(raw: Any) -> ExtractedTable:
    """
    Turn any accepted extraction response into an ExtractedTable.

    Args:
        raw: Decoded or JSON-encoded service response.

    Returns:
        A table with at least one row and one column.

    Raises:
        EmptyResultError: If the response holds no rows.
        InvalidShapeError: If the response is not a table.
    """
    table = _parse_shape(raw)
    if not table.rows or not table.headers:
        raise EmptyResultError(EMPTY_RESULT_MESSAGE)
    logger.info(
        "Normalized extraction response: %d row(s) x %d column(s)",
        len(table.rows),
        len(table.headers),
    )
    return table
