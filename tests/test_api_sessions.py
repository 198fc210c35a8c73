from __future__ import annotations

import base64
import json

import pytest

GOOD_OUTPUT = json.dumps(
    {
        "fields": [
            {"label": "Vendor", "value": "Acme Ltd", "confidence": 0.93},
            {"label": "Total", "value": "99.50", "confidence": 0.9},
            {"label": "Currency", "value": "EUR", "confidence": 0.9},
        ]
    }
)


@pytest.fixture
def api():
    from fastapi.testclient import TestClient

    from invoice_intake.api.deps import get_inference_client
    from invoice_intake.main import app
    from invoice_intake.state import build_stores

    app.state.stores = build_stores()
    scripted: dict = {}

    def _client():
        return scripted["client"]

    app.dependency_overrides[get_inference_client] = _client
    client = TestClient(app)
    client.script = lambda fake: scripted.__setitem__("client", fake)
    yield client
    app.dependency_overrides.clear()


def _data_url(mime: str, body: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(body).decode()}"


def test_healthz(api):
    assert api.get("/healthz").json() == {"status": "ok"}
    resp = api.get("/healthz/storage")
    assert resp.status_code == 200
    assert resp.json()["backend"] == "local"


def test_upload_then_process_then_delete(api, make_pdf, fake_client):
    body = make_pdf(1)
    resp = api.post(
        "/api/uploads", files={"upload": ("invoice.pdf", body, "application/pdf")}
    )
    assert resp.status_code == 200, resp.text
    upload = resp.json()
    assert upload["objectPath"].startswith("uploads/")
    assert upload["byteSize"] == len(body)
    assert upload["contentType"] == "application/pdf"

    resp = api.post(
        "/api/sessions",
        json={
            "fileName": "invoice.pdf",
            "fileType": "application/pdf",
            "fileSize": len(body),
            "objectPath": upload["objectPath"],
        },
    )
    assert resp.status_code == 201, resp.text
    created = resp.json()
    assert created["status"] == "uploading"
    assert created["version"] == 0

    api.script(fake_client(structured=[GOOD_OUTPUT]))
    resp = api.post(
        f"/api/sessions/{created['id']}/process",
        json={"deleteAfterProcessing": True, "expectedVersion": 0},
    )
    assert resp.status_code == 200, resp.text
    processed = resp.json()
    assert processed["status"] == "completed"
    assert processed["extractedData"]["fields"][0]["label"] == "Vendor"
    assert processed["errorCode"] is None

    fetched = api.get(f"/api/sessions/{created['id']}").json()
    assert fetched["status"] == "completed"
    assert fetched["version"] == processed["version"]

    # The upload was released after processing.
    api.script(fake_client(structured=[GOOD_OUTPUT]))
    resp = api.post(f"/api/sessions/{created['id']}/process", json={})
    assert resp.status_code == 400
    assert resp.json()["errorCode"] == "UPLOAD_INVALID"
    assert resp.json()["errorMessage"] == "Unable to access uploaded file."

    assert api.delete(f"/api/sessions/{created['id']}").status_code == 204
    resp = api.get(f"/api/sessions/{created['id']}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "SESSION_NOT_FOUND"


def test_stale_version_is_409(api, png_bytes, fake_client):
    created = api.post(
        "/api/sessions",
        json={"fileName": "scan.png", "fileType": "image/png", "fileSize": len(png_bytes)},
    ).json()

    api.script(fake_client(structured=[GOOD_OUTPUT]))
    resp = api.post(
        f"/api/sessions/{created['id']}/process",
        json={"fileDataUrl": _data_url("image/png", png_bytes), "expectedVersion": 3},
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "SESSION_CONFLICT"
    assert resp.json()["details"] == {"expectedVersion": 3, "currentVersion": 0}


def test_needs_review_and_error_outcomes(api, png_bytes, fake_client):
    created = api.post(
        "/api/sessions",
        json={"fileName": "scan.png", "fileType": "image/png", "fileSize": len(png_bytes)},
    ).json()
    url = _data_url("image/png", png_bytes)

    api.script(fake_client(structured=['{"fields": []}'], ocr=["ACME TOTAL 10"]))
    resp = api.post(f"/api/sessions/{created['id']}/process", json={"fileDataUrl": url})
    assert resp.status_code == 200
    review = resp.json()
    assert review["status"] == "needs_review"
    assert review["ocrText"] == "ACME TOTAL 10"
    assert review["errorCode"] == "PARSE_FAIL"

    api.script(fake_client(structured=["nope"], ocr=[""]))
    resp = api.post(f"/api/sessions/{created['id']}/process", json={"fileDataUrl": url})
    assert resp.status_code == 422
    failed = resp.json()
    assert failed["status"] == "error"
    assert failed["errorCode"] == "OCR_FAIL"
    assert failed["ocrText"] is None


def test_create_session_validation_errors(api):
    resp = api.post("/api/sessions", json={"fileName": "a.pdf"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "UPLOAD_INVALID"
    assert resp.json()["message"] == "Invalid request body."

    resp = api.post(
        "/api/sessions",
        json={"fileName": "a.pdf", "fileType": "application/pdf", "fileSize": 50 * 1024 * 1024},
    )
    assert resp.status_code == 413
    assert resp.json()["details"] == {"maxBytes": 10 * 1024 * 1024}


def test_upload_rejects_unsupported_type(api):
    resp = api.post("/api/uploads", files={"upload": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 400
    assert resp.json()["code"] == "UPLOAD_INVALID"


def test_one_shot_extract_and_usage(api, png_bytes, fake_client):
    assert api.get("/api/usage").json() == {
        "plan": "free",
        "scope": "ip",
        "limit": 3,
        "count": 0,
        "remaining": 3,
        "unlimited": False,
    }

    payload = {
        "fileName": "scan.png",
        "fileType": "image/png",
        "fileSize": len(png_bytes),
        "fileDataUrl": _data_url("image/png", png_bytes),
    }
    for _ in range(3):
        api.script(fake_client(structured=[GOOD_OUTPUT]))
        resp = api.post("/api/extract", json=payload)
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "completed"
        assert resp.json()["jobId"]

    api.script(fake_client(structured=[GOOD_OUTPUT]))
    resp = api.post("/api/extract", json=payload)
    assert resp.status_code == 429
    assert resp.json()["code"] == "USAGE_LIMIT"
    assert resp.json()["details"]["remaining"] == 0

    usage = api.get("/api/usage").json()
    assert usage["count"] == 3
    assert usage["remaining"] == 0


def test_one_shot_extract_ocr_failure_is_error_payload(api, png_bytes, fake_client):
    api.script(fake_client(structured=["nope"], ocr=[""]))
    resp = api.post(
        "/api/extract",
        json={
            "fileName": "scan.png",
            "fileType": "image/png",
            "fileSize": len(png_bytes),
            "fileDataUrl": _data_url("image/png", png_bytes),
        },
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "OCR_FAIL"


def test_entitlement_and_tokens(api):
    from invoice_intake.core.security import create_access_token
    from invoice_intake.main import app

    assert api.get("/api/billing/entitlement").json() == {"plan": "free", "status": None}

    app.state.stores.entitlements.upsert("user-42", plan="pro", status="active")
    headers = {"Authorization": f"Bearer {create_access_token(subject='user-42')}"}
    assert api.get("/api/billing/entitlement", headers=headers).json() == {
        "plan": "pro",
        "status": "active",
    }
    usage = api.get("/api/usage", headers=headers).json()
    assert usage["unlimited"] is True
    assert usage["scope"] == "user"

    resp = api.get("/api/usage", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "AUTH_REQUIRED"


def test_request_id_is_echoed(api):
    resp = api.get("/healthz", headers={"x-request-id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"
