"""Tests for FastAPI endpoints."""

import io
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from app.converter.routers.sessions import _content_disposition
from app.converter.services.ai import get_ai_service
from tests.conftest import PDF_PASSWORD

DATA_URI = "data:application/pdf;base64,JVBERi0xLjQK"
AUTH = {"Authorization": "Bearer test-token"}


def _create_session(client: TestClient) -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def _upload(client: TestClient, session_id: str, content: bytes, name: str = "statement.pdf", **kwargs):
    return client.post(
        f"/sessions/{session_id}/file",
        files={"file": (name, content, "application/pdf")},
        **kwargs,
    )


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Test root endpoint returns health status."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_health_endpoint(self, client: TestClient):
        """Test /health endpoint returns health status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestExtractEndpoint:
    """Tests for POST /extract."""

    def test_extract_from_data_uri(self, client: TestClient):
        response = client.post("/extract", json={"pdfDataUri": DATA_URI})
        assert response.status_code == 200
        data = response.json()
        assert data["headers"][0] == "Date"
        assert len(data["tabularData"]) == 3
        assert set(data["tabularData"][0]) == set(data["headers"])

    def test_extract_from_text(self, client: TestClient):
        response = client.post("/extract", json={"textContent": "Date Amount 2024-01-01 10.00"})
        assert response.status_code == 200

    def test_guest_limited_after_quota(self, client: TestClient):
        headers = {"X-Forwarded-For": "198.51.100.7"}
        for _ in range(2):
            assert client.post("/extract", json={"pdfDataUri": DATA_URI}, headers=headers).status_code == 200

        response = client.post("/extract", json={"pdfDataUri": DATA_URI}, headers=headers)
        assert response.status_code == 429
        data = response.json()
        assert data["kind"] == "rate_limited"
        assert "exceeded the limit" in data["detail"]

    def test_quota_is_per_client(self, client: TestClient):
        for _ in range(2):
            client.post("/extract", json={"pdfDataUri": DATA_URI}, headers={"X-Forwarded-For": "1.1.1.1"})
        response = client.post(
            "/extract", json={"pdfDataUri": DATA_URI}, headers={"X-Forwarded-For": "2.2.2.2"}
        )
        assert response.status_code == 200

    def test_logged_in_bypasses_quota(self, client: TestClient):
        body = {"pdfDataUri": DATA_URI, "isLoggedIn": True}
        for _ in range(4):
            assert client.post("/extract", json=body, headers=AUTH).status_code == 200

    def test_login_flag_without_token_is_guest(self, client: TestClient):
        body = {"pdfDataUri": DATA_URI, "isLoggedIn": True}
        for _ in range(2):
            client.post("/extract", json=body)
        assert client.post("/extract", json=body).status_code == 429

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"pdfDataUri": DATA_URI, "textContent": "x"},
            {"pdfDataUri": "not-a-data-uri"},
            {"textContent": "  "},
        ],
    )
    def test_invalid_bodies_rejected(self, client: TestClient, body):
        assert client.post("/extract", json=body).status_code == 422

    def test_empty_result_is_unprocessable(self, client: TestClient, make_ai_service):
        service, _ = make_ai_service(content="[]")
        client.app.dependency_overrides[get_ai_service] = lambda: service

        response = client.post("/extract", json={"pdfDataUri": DATA_URI}, headers=AUTH)

        assert response.status_code == 422
        assert response.json()["kind"] == "empty_result"

    def test_invalid_shape_is_unprocessable(self, client: TestClient, make_ai_service):
        service, _ = make_ai_service(content={"table": []})
        client.app.dependency_overrides[get_ai_service] = lambda: service

        response = client.post("/extract", json={"textContent": "x"})

        assert response.status_code == 422
        assert response.json()["kind"] == "invalid_shape"


class TestSessionLifecycle:
    """Tests for creating, reading and deleting sessions."""

    def test_create_and_get(self, client: TestClient):
        session_id = _create_session(client)
        response = client.get(f"/sessions/{session_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "upload"
        assert data["table"] is None

    def test_unknown_session_is_404(self, client: TestClient):
        assert client.get("/sessions/does-not-exist").status_code == 404

    def test_delete(self, client: TestClient):
        session_id = _create_session(client)
        assert client.delete(f"/sessions/{session_id}").status_code == 204
        assert client.get(f"/sessions/{session_id}").status_code == 404


class TestUploadFlow:
    """Tests for upload, password loop and reset."""

    def test_upload_goes_to_preview(self, client: TestClient, sample_pdf_bytes: bytes):
        session_id = _create_session(client)
        response = _upload(client, session_id, sample_pdf_bytes)
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "preview"
        assert data["file_name"] == "statement.pdf"
        assert len(data["table"]["rows"]) == 3

    def test_upload_rejects_non_pdf(self, client: TestClient):
        session_id = _create_session(client)
        response = client.post(
            f"/sessions/{session_id}/file",
            files={"file": ("notes.txt", b"not a pdf", "text/plain")},
        )
        assert response.status_code == 400
        assert "PDF" in response.json()["detail"]

    def test_upload_corrupted_pdf_sets_error_state(
        self, client: TestClient, invalid_file_bytes: bytes
    ):
        session_id = _create_session(client)
        data = _upload(client, session_id, invalid_file_bytes).json()
        assert data["state"] == "error"
        assert data["error_kind"] == "corrupted"
        assert "corrupted" in data["error_message"]

    def test_password_loop(self, client: TestClient, encrypted_pdf_bytes: bytes):
        session_id = _create_session(client)
        data = _upload(client, session_id, encrypted_pdf_bytes).json()
        assert data["state"] == "password_prompt"
        assert data["password_error"] is False

        data = client.post(f"/sessions/{session_id}/password", data={"password": "wrong"}).json()
        assert data["state"] == "password_prompt"
        assert data["password_error"] is True
        assert data["error_message"] == "Incorrect password. Please try again."

        data = client.post(
            f"/sessions/{session_id}/password", data={"password": PDF_PASSWORD}
        ).json()
        assert data["state"] == "preview"
        assert data["password_error"] is False

    def test_empty_password_rejected(self, client: TestClient, encrypted_pdf_bytes: bytes):
        session_id = _create_session(client)
        _upload(client, session_id, encrypted_pdf_bytes)
        response = client.post(f"/sessions/{session_id}/password", data={"password": ""})
        assert response.status_code == 422

    def test_cancel_password(self, client: TestClient, encrypted_pdf_bytes: bytes):
        session_id = _create_session(client)
        _upload(client, session_id, encrypted_pdf_bytes)
        data = client.post(f"/sessions/{session_id}/cancel").json()
        assert data["state"] == "upload"
        assert data["file_name"] is None

    def test_password_without_prompt_is_conflict(self, client: TestClient):
        session_id = _create_session(client)
        response = client.post(f"/sessions/{session_id}/password", data={"password": "x"})
        assert response.status_code == 409
        assert response.json()["kind"] == "invalid_transition"

    def test_reset_after_preview(self, client: TestClient, sample_pdf_bytes: bytes):
        session_id = _create_session(client)
        _upload(client, session_id, sample_pdf_bytes)
        data = client.post(f"/sessions/{session_id}/reset").json()
        assert data["state"] == "upload"
        assert data["table"] is None

    def test_guest_quota_applies_to_uploads(self, client: TestClient, sample_pdf_bytes: bytes):
        session_id = _create_session(client)
        headers = {"X-Forwarded-For": "203.0.113.9"}
        for _ in range(2):
            assert _upload(client, session_id, sample_pdf_bytes, headers=headers).json()["state"] == "preview"

        data = _upload(client, session_id, sample_pdf_bytes, headers=headers).json()
        assert data["state"] == "error"
        assert data["error_kind"] == "rate_limited"
        assert data["upgrade_prompt"] is True

        data = _upload(client, session_id, sample_pdf_bytes, headers={**headers, **AUTH}).json()
        assert data["state"] == "preview"


class TestTableEditing:
    """Tests for row edits and export."""

    @pytest.fixture
    def session_id(self, client: TestClient, sample_pdf_bytes: bytes) -> str:
        session_id = _create_session(client)
        _upload(client, session_id, sample_pdf_bytes)
        return session_id

    def test_update_cell(self, client: TestClient, session_id: str):
        response = client.patch(
            f"/sessions/{session_id}/rows/0",
            json={"column": "Description", "value": "Edited"},
        )
        assert response.status_code == 200
        assert response.json()["table"]["rows"][0]["Description"] == "Edited"

    def test_update_cell_unknown_column(self, client: TestClient, session_id: str):
        response = client.patch(
            f"/sessions/{session_id}/rows/0",
            json={"column": "Nope", "value": "x"},
        )
        assert response.status_code == 400

    def test_update_cell_out_of_range(self, client: TestClient, session_id: str):
        response = client.patch(
            f"/sessions/{session_id}/rows/99",
            json={"column": "Description", "value": "x"},
        )
        assert response.status_code == 404

    def test_append_move_delete(self, client: TestClient, session_id: str):
        rows = client.post(f"/sessions/{session_id}/rows").json()["table"]["rows"]
        assert len(rows) == 4
        assert all(value == "" for value in rows[3].values())

        rows = client.post(
            f"/sessions/{session_id}/rows/move", json={"from_index": 3, "to_index": 0}
        ).json()["table"]["rows"]
        assert rows[0]["Date"] == ""

        rows = client.delete(f"/sessions/{session_id}/rows/0").json()["table"]["rows"]
        assert len(rows) == 3
        assert rows[0]["Date"] != ""

    def test_replace_rows(self, client: TestClient, session_id: str):
        response = client.put(
            f"/sessions/{session_id}/rows",
            json={"rows": [{"Date": "2024-03-01", "Debit": "5.00"}]},
        )
        assert response.status_code == 200
        rows = response.json()["table"]["rows"]
        assert rows == [
            {"Date": "2024-03-01", "Description": "", "Debit": "5.00", "Credit": "", "Balance": ""}
        ]

    def test_replace_rows_unknown_column(self, client: TestClient, session_id: str):
        response = client.put(f"/sessions/{session_id}/rows", json={"rows": [{"Memo": "x"}]})
        assert response.status_code == 400

    def test_edit_outside_preview_is_conflict(self, client: TestClient):
        session_id = _create_session(client)
        response = client.post(f"/sessions/{session_id}/rows")
        assert response.status_code == 409

    def test_export_xlsx(self, client: TestClient, session_id: str):
        client.patch(
            f"/sessions/{session_id}/rows/1",
            json={"column": "Description", "value": "Edited"},
        )
        response = client.get(f"/sessions/{session_id}/export")
        assert response.status_code == 200
        assert 'filename="statement.xlsx"' in response.headers["content-disposition"]

        workbook = load_workbook(io.BytesIO(response.content))
        rows = list(workbook["Sheet1"].iter_rows(values_only=True))
        assert rows[0] == ("Date", "Description", "Debit", "Credit", "Balance")
        assert rows[2][1] == "Edited"
        assert len(rows) == 4

    @pytest.mark.parametrize(
        "upload_name,expected_name",
        [
            ("报表.pdf", "报表.xlsx"),
            ("Kontoauszug_März.pdf", "Kontoauszug_März.xlsx"),
        ],
    )
    def test_export_non_ascii_filename(
        self, client: TestClient, sample_pdf_bytes: bytes, upload_name: str, expected_name: str
    ):
        session_id = _create_session(client)
        assert _upload(client, session_id, sample_pdf_bytes, name=upload_name).json()["state"] == "preview"

        response = client.get(f"/sessions/{session_id}/export")

        assert response.status_code == 200
        disposition = response.headers["content-disposition"]
        disposition.encode("ascii")
        assert f"filename*=UTF-8''{quote(expected_name)}" in disposition
        assert 'filename="' in disposition

    def test_content_disposition_fallback_is_safe_ascii(self):
        disposition = _content_disposition('my "q1"\r\n.xlsx')
        assert disposition.startswith('attachment; filename="my _q1___.xlsx"; ')
        assert disposition.endswith("filename*=UTF-8''my%20%22q1%22%0D%0A.xlsx")
