"""
Pydantic models for the PDF table conversion pipeline.

Defines the editable table produced by extraction, the session view returned
to clients, and request/response bodies for the HTTP API.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SessionState(str, Enum):
    """States of a conversion session."""

    UPLOAD = "upload"
    LOADING = "loading"
    PASSWORD_PROMPT = "password_prompt"
    PREVIEW = "preview"
    ERROR = "error"


class ExtractedTable(BaseModel):
    """
    Ordered rows of string cells keyed by column header.

    Every row has exactly the header set as its keys; cells the service did
    not provide are empty strings. The table is mutable so the caller can edit
    cells, reorder, delete and append rows.

    Attributes:
        headers: Column headers in display order, unique within the table.
        rows: Row mappings from header to cell value.
    """

    headers: list[str] = Field(
        default_factory=list,
        description="Column headers in order",
    )
    rows: list[dict[str, str]] = Field(
        default_factory=list,
        description="Rows as header -> cell mappings",
    )

    @field_validator("headers")
    @classmethod
    def validate_unique_headers(cls, v: list[str]) -> list[str]:
        """Ensure all headers are unique."""
        if len(v) != len(set(v)):
            raise ValueError("All headers must be unique within a table")
        return v

    @model_validator(mode="after")
    def validate_uniform_rows(self) -> "ExtractedTable":
        """Ensure every row carries exactly the header set."""
        expected = set(self.headers)
        for index, row in enumerate(self.rows):
            if set(row) != expected:
                raise ValueError(f"Row {index} does not match the table headers")
        return self

    def __len__(self) -> int:
        return len(self.rows)

    def blank_row(self) -> dict[str, str]:
        return {header: "" for header in self.headers}

    def to_records(self) -> list[dict[str, str]]:
        """Copy of the rows with keys in header order."""
        return [{header: row[header] for header in self.headers} for row in self.rows]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.rows):
            raise IndexError(f"Row index {index} out of range (0-{len(self.rows) - 1})")

    def set_cell(self, row_index: int, header: str, value: str) -> None:
        """Overwrite a single cell."""
        self._check_index(row_index)
        if header not in self.headers:
            raise KeyError(f"Unknown column '{header}'")
        self.rows[row_index][header] = value

    def move_row(self, from_index: int, to_index: int) -> None:
        """Move a row to a new position, shifting the rows in between."""
        self._check_index(from_index)
        self._check_index(to_index)
        row = self.rows.pop(from_index)
        self.rows.insert(to_index, row)

    def delete_row(self, row_index: int) -> None:
        self._check_index(row_index)
        del self.rows[row_index]

    def append_row(self) -> int:
        """Append a blank row and return its index."""
        self.rows.append(self.blank_row())
        return len(self.rows) - 1

    def replace_rows(self, rows: list[dict[str, Any]]) -> None:
        """
        Replace all rows with edited ones.

        Missing cells become empty strings; unknown columns are rejected.
        """
        replaced: list[dict[str, str]] = []
        for index, row in enumerate(rows):
            unknown = set(row) - set(self.headers)
            if unknown:
                raise KeyError(f"Row {index} has unknown columns: {sorted(unknown)}")
            replaced.append(
                {
                    header: "" if row.get(header) is None else str(row.get(header))
                    for header in self.headers
                }
            )
        self.rows = replaced


# =============================================================================
# Health Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    version: str = Field(default="1.0.0")
    message: str | None = Field(default=None)


# =============================================================================
# Stateless Extraction Models
# =============================================================================


class ExtractRequest(BaseModel):
    """
    Request model for a single extraction call.

    Exactly one of ``pdfDataUri`` or ``textContent`` must be provided.
    """

    model_config = ConfigDict(populate_by_name=True)

    pdf_data_uri: str | None = Field(
        default=None,
        alias="pdfDataUri",
        description="PDF as data:<mime>;base64,<data>",
    )
    text_content: str | None = Field(
        default=None,
        alias="textContent",
        description="Plain text extracted from the PDF",
    )
    is_logged_in: bool = Field(
        default=False,
        alias="isLoggedIn",
        description="Logged-in callers bypass the guest quota",
    )

    @model_validator(mode="after")
    def validate_single_payload(self) -> "ExtractRequest":
        """Ensure exactly one payload form is provided."""
        if (self.pdf_data_uri is None) == (self.text_content is None):
            raise ValueError("Provide exactly one of pdfDataUri or textContent")
        if self.pdf_data_uri is not None and not self.pdf_data_uri.startswith("data:"):
            raise ValueError("pdfDataUri must be a data URI")
        if self.text_content is not None and not self.text_content.strip():
            raise ValueError("textContent must not be blank")
        return self


class ExtractResponse(BaseModel):
    """Response model for a single extraction call."""

    model_config = ConfigDict(populate_by_name=True)

    headers: list[str] = Field(..., description="Column headers in order")
    tabular_data: list[dict[str, str]] = Field(
        ...,
        alias="tabularData",
        description="Extracted rows as header -> cell mappings",
    )


# =============================================================================
# Session Models
# =============================================================================


class SessionView(BaseModel):
    """Observable state of a conversion session."""

    session_id: str = Field(..., description="Session ID (UUID)")
    state: SessionState = Field(..., description="Current state")
    file_name: str | None = Field(
        default=None,
        description="Name of the file being converted or last converted",
    )
    password_error: bool = Field(
        default=False,
        description="True after an incorrect password was submitted",
    )
    error_message: str | None = Field(default=None, description="Last error message")
    error_kind: str | None = Field(default=None, description="Machine-readable error kind")
    upgrade_prompt: bool = Field(
        default=False,
        description="True when the guest quota was exceeded",
    )
    table: ExtractedTable | None = Field(default=None, description="Extracted table")


class UpdateCellRequest(BaseModel):
    """Request model for editing one cell."""

    column: str = Field(..., description="Column header")
    value: str = Field(..., description="New cell value")


class MoveRowRequest(BaseModel):
    """Request model for reordering rows."""

    from_index: int = Field(..., ge=0, description="Current row position")
    to_index: int = Field(..., ge=0, description="Target row position")


class ReplaceRowsRequest(BaseModel):
    """Request model for replacing all rows after bulk edits."""

    rows: list[dict[str, Any]] = Field(..., description="Edited rows")
