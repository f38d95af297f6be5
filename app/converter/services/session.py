"""
Conversion sessions: the upload -> password -> extraction state machine.

One session exists per client tab. Transitions:

    upload --select_file--> loading --> preview | password_prompt | error
    password_prompt --submit_password--> loading
    password_prompt --cancel_password--> upload
    any --reset--> upload

Each attempt gets a generation token. A result that arrives after the session
moved on (new file, reset, cancel) is dropped instead of being applied.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..exceptions import (
    ConversionError,
    CorruptedPDFError,
    FileReadError,
    InvalidTransitionError,
    RateLimitedError,
)
from ..models import ExtractedTable, SessionState, SessionView
from .ai import AIService, get_ai_service
from .normalizer import ContentNormalizer, get_normalizer
from .pdf_service import (
    Corrupted,
    InvalidPassword,
    Loaded,
    PasswordRequired,
    PDFService,
    get_pdf_service,
)
from .rate_limiter import FALLBACK_CLIENT_ID

logger = logging.getLogger(__name__)

CORRUPTED_MESSAGE = "Failed to load the PDF file. It might be corrupted."
INCORRECT_PASSWORD_MESSAGE = "Incorrect password. Please try again."


@dataclass(frozen=True)
class UploadedFile:
    """A user upload held in memory for one conversion attempt."""

    content: bytes
    filename: str
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class Requester:
    """Who is asking: rate-limit identity and login status."""

    client_id: str = FALLBACK_CLIENT_ID
    is_authenticated: bool = False


class ConversionSession:
    """
    Aggregate holding one tab's conversion state.

    Owns at most one uploaded file and one extracted table. The pending
    password only lives for the duration of a single load attempt.
    """

    def __init__(
        self,
        pdf_service: PDFService | None = None,
        normalizer: ContentNormalizer | None = None,
        ai_service: AIService | None = None,
        session_id: str | None = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.pdf_service = pdf_service or get_pdf_service()
        self.normalizer = normalizer or get_normalizer()
        self.ai_service = ai_service or get_ai_service()
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self.state = SessionState.UPLOAD
        self.file: UploadedFile | None = None
        self.file_name: str | None = None
        self.pending_password: str | None = None
        self.table: ExtractedTable | None = None
        self.error_message: str | None = None
        self.error_kind: str | None = None
        self.password_error = False
        self.upgrade_prompt = False

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, token: int) -> bool:
        return token == self._generation

    @property
    def generation(self) -> int:
        return self._generation

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    async def select_file(self, file: UploadedFile, requester: Requester | None = None) -> None:
        """Start a conversion, superseding any attempt still in flight."""
        token = self._next_generation()
        self._clear()
        requester = requester or Requester()

        if not file.content:
            self._fail(FileReadError("Failed to read the file: it is empty."))
            return

        self.file = file
        self.file_name = file.filename
        self.state = SessionState.LOADING
        logger.info(
            "Session %s: processing %s (%d bytes)",
            self.session_id,
            file.filename,
            len(file.content),
        )
        await self._attempt(token, requester)

    async def submit_password(self, password: str, requester: Requester | None = None) -> None:
        """Retry loading the retained file with a password."""
        if self.state != SessionState.PASSWORD_PROMPT or self.file is None:
            raise InvalidTransitionError(
                f"Cannot submit a password in state '{self.state.value}'"
            )
        if not password:
            raise ValueError("Password must not be empty")

        token = self._next_generation()
        self.pending_password = password
        self.password_error = False
        self.state = SessionState.LOADING
        await self._attempt(token, requester or Requester())

    def cancel_password(self) -> None:
        """Close the password prompt, discarding the file."""
        if self.state != SessionState.PASSWORD_PROMPT:
            raise InvalidTransitionError(
                f"No password prompt to cancel in state '{self.state.value}'"
            )
        self.reset()

    def reset(self) -> None:
        """Start over / try again: back to the initial state."""
        self._next_generation()
        self._clear()
        logger.debug("Session %s reset", self.session_id)

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _attempt(self, token: int, requester: Requester) -> None:
        file = self.file
        password = self.pending_password
        try:
            result = await asyncio.to_thread(self.pdf_service.load, file.content, password)
        finally:
            if self._is_current(token):
                self.pending_password = None

        if not self._is_current(token):
            logger.info("Session %s: discarding stale load result", self.session_id)
            return

        if isinstance(result, Loaded):
            await self._extract(token, result.buffer, file.mime_type, requester)
        elif isinstance(result, PasswordRequired):
            self.state = SessionState.PASSWORD_PROMPT
            self.password_error = False
        elif isinstance(result, InvalidPassword):
            self.state = SessionState.PASSWORD_PROMPT
            self.password_error = True
        elif isinstance(result, Corrupted):
            logger.warning("Session %s: corrupted PDF: %s", self.session_id, result.reason)
            self._fail(CorruptedPDFError(CORRUPTED_MESSAGE))

    async def _extract(
        self, token: int, buffer: bytes, mime_type: str, requester: Requester
    ) -> None:
        try:
            payload = await asyncio.to_thread(self.normalizer.normalize, buffer, mime_type)
            table = await self.ai_service.extract_table(
                payload,
                is_authenticated=requester.is_authenticated,
                client_id=requester.client_id,
                record_usage=False,
            )
        except ConversionError as e:
            if self._is_current(token):
                self._fail(e)
            return
        except Exception:
            logger.exception("Session %s: unexpected extraction failure", self.session_id)
            if self._is_current(token):
                self._fail(ConversionError("An unexpected error occurred during extraction."))
            return

        if not self._is_current(token):
            logger.info("Session %s: discarding stale extraction result", self.session_id)
            return

        self.ai_service.commit_usage(requester.client_id, requester.is_authenticated)
        self.table = table
        self.file = None
        self.state = SessionState.PREVIEW
        logger.info(
            "Session %s: extracted %d row(s) x %d column(s)",
            self.session_id,
            len(table.rows),
            len(table.headers),
        )

    def _fail(self, error: ConversionError) -> None:
        self.state = SessionState.ERROR
        self.error_message = str(error)
        self.error_kind = error.kind
        self.upgrade_prompt = isinstance(error, RateLimitedError)
        logger.info("Session %s failed (%s): %s", self.session_id, error.kind, error)

    # -------------------------------------------------------------------------
    # Table editing
    # -------------------------------------------------------------------------

    def editable_table(self) -> ExtractedTable:
        """The extracted table, available only in preview."""
        if self.state != SessionState.PREVIEW or self.table is None:
            raise InvalidTransitionError(
                f"No extracted table to edit in state '{self.state.value}'"
            )
        return self.table

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    def view(self) -> SessionView:
        return SessionView(
            session_id=self.session_id,
            state=self.state,
            file_name=self.file_name,
            password_error=self.password_error,
            error_message=(
                INCORRECT_PASSWORD_MESSAGE if self.password_error else self.error_message
            ),
            error_kind=self.error_kind,
            upgrade_prompt=self.upgrade_prompt,
            table=self.table,
        )


# =============================================================================
# Session Store
# =============================================================================


class SessionStore:
    """
    Process-local registry of conversion sessions.

    With ``ttl_seconds`` set, sessions not accessed for that long are reset
    and dropped the next time a session is created.
    """

    def __init__(
        self,
        factory: Callable[..., ConversionSession] = ConversionSession,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ConversionSession] = {}
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> list[ConversionSession]:
        if self._ttl is None:
            return []
        expired = [
            session_id
            for session_id, seen in self._last_seen.items()
            if now - seen >= self._ttl
        ]
        dropped = []
        for session_id in expired:
            del self._last_seen[session_id]
            dropped.append(self._sessions.pop(session_id))
        return dropped

    def create(self, **kwargs: Any) -> ConversionSession:
        session = self._factory(**kwargs)
        with self._lock:
            now = self._clock()
            expired = self._sweep(now)
            self._sessions[session.session_id] = session
            self._last_seen[session.session_id] = now
        for stale in expired:
            stale.reset()
        if expired:
            logger.info("Expired %d idle session(s)", len(expired))
        logger.info("Created session %s", session.session_id)
        return session

    def get(self, session_id: str) -> ConversionSession:
        """Raises KeyError for unknown ids."""
        with self._lock:
            session = self._sessions[session_id]
            self._last_seen[session_id] = self._clock()
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        logger.info("Deleted session %s", session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# Singleton instance for convenience
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get or create the session store singleton."""
    global _session_store
    if _session_store is None:
        from ..config import get_settings

        ttl_minutes = get_settings().session_ttl_minutes
        _session_store = SessionStore(ttl_seconds=ttl_minutes * 60 if ttl_minutes > 0 else None)
    return _session_store
