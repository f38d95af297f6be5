"""
Router for conversion sessions.

Handles:
- Session lifecycle (create, inspect, delete)
- File upload and the password retry loop
- Editing the extracted table
- Excel export
"""

import logging
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from ..dependencies import get_requester, get_session
from ..exceptions import FileReadError
from ..models import (
    MoveRowRequest,
    ReplaceRowsRequest,
    SessionView,
    UpdateCellRequest,
)
from ..services.export_service import XLSX_MEDIA_TYPE, export_filename, table_to_xlsx_bytes
from ..services.session import (
    ConversionSession,
    Requester,
    SessionStore,
    UploadedFile,
    get_session_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

SessionDep = Annotated[ConversionSession, Depends(get_session)]
RequesterDep = Annotated[Requester, Depends(get_requester)]


def _content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 UTF-8 name."""
    fallback = "".join(
        char if " " <= char <= "~" and char not in '"\\' else "_" for char in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _is_pdf(file: UploadFile) -> bool:
    if file.content_type == "application/pdf":
        return True
    return bool(file.filename) and file.filename.lower().endswith(".pdf")


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session(
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> SessionView:
    """Create a new conversion session in the upload state."""
    return store.create().view()


@router.get("/{session_id}", response_model=SessionView)
async def get_session_view(session: SessionDep) -> SessionView:
    """Return the current state of a session."""
    return session.view()


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session: SessionDep,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> Response:
    """Discard a session and everything it holds."""
    session.reset()
    store.delete(session.session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Upload / Password Loop
# =============================================================================


@router.post("/{session_id}/file", response_model=SessionView)
async def upload_file(
    session: SessionDep,
    requester: RequesterDep,
    file: Annotated[UploadFile, File(description="PDF file to convert")],
) -> SessionView:
    """
    Upload a PDF and run the conversion.

    The response is the resulting state: preview, password_prompt or error.
    Uploading again while a conversion is running supersedes it.
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No filename provided",
        )

    if not _is_pdf(file):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only PDF files are accepted",
        )

    try:
        content = await file.read()
    except Exception as e:
        logger.exception("Failed to read upload %s", file.filename)
        raise FileReadError("Failed to read the file.") from e
    finally:
        await file.close()

    await session.select_file(
        UploadedFile(
            content=content,
            filename=file.filename,
            mime_type="application/pdf",
        ),
        requester,
    )
    return session.view()


@router.post("/{session_id}/password", response_model=SessionView)
async def submit_password(
    session: SessionDep,
    requester: RequesterDep,
    password: Annotated[str, Form(min_length=1)],
) -> SessionView:
    """Retry the retained PDF with a password."""
    await session.submit_password(password, requester)
    return session.view()


@router.post("/{session_id}/cancel", response_model=SessionView)
async def cancel_password(session: SessionDep) -> SessionView:
    """Close the password prompt and discard the file."""
    session.cancel_password()
    return session.view()


@router.post("/{session_id}/reset", response_model=SessionView)
async def reset_session(session: SessionDep) -> SessionView:
    """Start over / try again."""
    session.reset()
    return session.view()


# =============================================================================
# Table Editing
# =============================================================================


@router.put("/{session_id}/rows", response_model=SessionView)
async def replace_rows(session: SessionDep, request: ReplaceRowsRequest) -> SessionView:
    """Replace all rows after bulk edits in the grid."""
    table = session.editable_table()
    try:
        table.replace_rows(request.rows)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e.args[0]),
        )
    return session.view()


@router.post("/{session_id}/rows", response_model=SessionView)
async def append_row(session: SessionDep) -> SessionView:
    """Append a blank row."""
    session.editable_table().append_row()
    return session.view()


@router.post("/{session_id}/rows/move", response_model=SessionView)
async def move_row(session: SessionDep, request: MoveRowRequest) -> SessionView:
    """Move a row (drag and drop)."""
    try:
        session.editable_table().move_row(request.from_index, request.to_index)
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return session.view()


@router.patch("/{session_id}/rows/{row_index}", response_model=SessionView)
async def update_cell(
    session: SessionDep,
    row_index: int,
    request: UpdateCellRequest,
) -> SessionView:
    """Edit a single cell."""
    table = session.editable_table()
    try:
        table.set_cell(row_index, request.column, request.value)
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e.args[0]),
        )
    return session.view()


@router.delete("/{session_id}/rows/{row_index}", response_model=SessionView)
async def delete_row(session: SessionDep, row_index: int) -> SessionView:
    """Delete a row."""
    try:
        session.editable_table().delete_row(row_index)
    except IndexError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return session.view()


# =============================================================================
# Export
# =============================================================================


@router.get("/{session_id}/export")
async def export_xlsx(session: SessionDep) -> Response:
    """Download the (edited) table as an Excel workbook."""
    table = session.editable_table()
    filename = export_filename(session.file_name)
    content = table_to_xlsx_bytes(table)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": _content_disposition(filename),
        },
    )
