"""Pytest configuration and fixtures."""

import asyncio
import io
import json
from types import SimpleNamespace
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader, PdfWriter

from app.converter.main import app
from app.converter.services.ai import AIService, get_ai_service
from app.converter.services.normalizer import DataUriNormalizer
from app.converter.services.pdf_service import PDFService
from app.converter.services.rate_limiter import InMemoryRateLimiter
from app.converter.services.session import ConversionSession, SessionStore, get_session_store

PDF_PASSWORD = "s3cret"


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: list[list[str]]) -> bytes:
    """
    Build a small PDF with one text line per entry, using Helvetica.

    Offsets in the xref table are computed so strict parsers accept it.
    """
    count = len(pages)
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(count))
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {count} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for index, lines in enumerate(pages):
        content_ref = 5 + 2 * index
        ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
        for line in lines:
            ops.append(f"({_escape(line)}) Tj")
            ops.append("T*")
        ops.append("ET")
        stream = "\n".join(ops).encode("latin-1")
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_ref} 0 R >>"
            ).encode()
        )
        objects.append(
            f"<< /Length {len(stream)} >>\nstream\n".encode() + stream + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


def encrypt_pdf(pdf_bytes: bytes, user_password: str, owner_password: str | None = None) -> bytes:
    """Encrypt a PDF with pypdf."""
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(pdf_bytes)))
    writer.encrypt(user_password=user_password, owner_password=owner_password)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


# =============================================================================
# PDF fixtures
# =============================================================================


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """A 1-page PDF holding a 2-column, 3-row table."""
    return build_pdf([["Date Amount", "2024-01-01 10.00", "2024-01-02 20.00", "2024-01-03 30.00"]])


@pytest.fixture
def two_page_pdf_bytes() -> bytes:
    return build_pdf([["Page one text"], ["Page two text"]])


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """A PDF without any text layer."""
    return build_pdf([[]])


@pytest.fixture
def encrypted_pdf_bytes(sample_pdf_bytes: bytes) -> bytes:
    return encrypt_pdf(sample_pdf_bytes, PDF_PASSWORD)


@pytest.fixture
def invalid_file_bytes() -> bytes:
    """Create invalid (non-PDF) file bytes for testing."""
    return b"This is not a PDF file"


# =============================================================================
# Extraction service stubs
# =============================================================================


class StubCompletions:
    """Stands in for ``AsyncOpenAI().chat.completions``."""

    def __init__(self, content: Any = None, error: Exception | None = None, delay: float = 0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        content = self.content if isinstance(self.content, str) else json.dumps(self.content)
        message = SimpleNamespace(content=content, refusal=None)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class StubOpenAIClient:
    def __init__(self, completions: StubCompletions):
        self.chat = SimpleNamespace(completions=completions)


@pytest.fixture
def table_response() -> dict[str, Any]:
    return {
        "headers": ["Date", "Amount"],
        "rows": [
            ["2024-01-01", "10.00"],
            ["2024-01-02", "20.00"],
            ["2024-01-03", "30.00"],
        ],
    }


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter(quota=2, window_ms=6 * 60 * 60 * 1000)


@pytest.fixture
def make_ai_service(rate_limiter: InMemoryRateLimiter):
    """Factory for an AIService backed by a stub OpenAI client."""

    def _make(content: Any = None, error: Exception | None = None, delay: float = 0.0, timeout: float = 5.0):
        completions = StubCompletions(content=content, error=error, delay=delay)
        service = AIService(
            api_key="test-key",
            model="test-model",
            timeout=timeout,
            rate_limiter=rate_limiter,
            client=StubOpenAIClient(completions),
        )
        return service, completions

    return _make


# =============================================================================
# API fixtures
# =============================================================================


@pytest.fixture
def mock_ai_service(rate_limiter: InMemoryRateLimiter) -> AIService:
    return AIService(api_key="", use_mock=True, rate_limiter=rate_limiter)


@pytest.fixture
def session_store(mock_ai_service: AIService) -> SessionStore:
    def factory(**kwargs: Any) -> ConversionSession:
        return ConversionSession(
            pdf_service=PDFService(),
            normalizer=DataUriNormalizer(),
            ai_service=mock_ai_service,
            **kwargs,
        )

    return SessionStore(factory=factory)


@pytest.fixture
def client(
    mock_ai_service: AIService, session_store: SessionStore
) -> Generator[TestClient, None, None]:
    """Create a test client with isolated services for each test."""
    app.dependency_overrides[get_ai_service] = lambda: mock_ai_service
    app.dependency_overrides[get_session_store] = lambda: session_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
