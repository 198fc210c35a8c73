from __future__ import annotations

import asyncio
import base64
import json
from datetime import timedelta

import pytest

EXTRACTED = {
    "id": "x",
    "fields": [
        {"label": "Vendor Name", "value": "Northwind Traders"},
        {"label": "Invoice Number", "value": "INV-2041"},
        {"label": "Invoice Date", "value": "2026-01-15"},
        {"label": "Subtotal", "value": "100.00"},
        {"label": "Total Amount", "value": "€ 119.00"},
    ],
    "lineItems": [{"description": "Paper", "amount": 100}],
}


def _record(session_id: str = "s-1"):
    from invoice_intake.core.models import expires_in
    from invoice_intake.modules.sessions.models import SessionStatus
    from invoice_intake.modules.sessions.store import SessionRecord

    return SessionRecord(
        id=session_id,
        file_name="invoice.pdf",
        file_type="application/pdf",
        file_size=1234,
        status=SessionStatus.COMPLETED,
        expires_at=expires_in(60),
    )


def test_derive_metadata_picks_summary_fields():
    from invoice_intake.modules.history.service import derive_metadata

    meta = derive_metadata(EXTRACTED)
    assert meta == {
        "vendor_name": "Northwind Traders",
        "invoice_number": "INV-2041",
        "document_date": "2026-01-15",
        "total_amount": 119.0,
        "currency": "EUR",
    }


def test_list_searches_and_prunes_expired():
    from invoice_intake.core.db import SessionLocal
    from invoice_intake.core.models import utcnow
    from invoice_intake.modules.history.service import list_history, save_history_entry

    now = utcnow()
    with SessionLocal() as session:
        save_history_entry(session, user_id="u1", record=_record("a"), extracted_data=EXTRACTED)
        other = {"fields": [{"label": "Vendor", "value": "Contoso"}]}
        save_history_entry(session, user_id="u1", record=_record("b"), extracted_data=other)
        save_history_entry(session, user_id="u2", record=_record("c"), extracted_data=EXTRACTED)
        save_history_entry(
            session,
            user_id="u1",
            record=_record("old"),
            extracted_data=EXTRACTED,
            now=now - timedelta(days=60),
        )

        entries = list_history(session, user_id="u1")
        assert sorted(e.session_id for e in entries) == ["a", "b"]

        assert [e.session_id for e in list_history(session, user_id="u1", query="northwind")] == [
            "a"
        ]
        assert [e.session_id for e in list_history(session, user_id="u1", query="119")] == ["a"]
        assert len(list_history(session, user_id="u1", limit=1)) == 1


def test_history_requires_pro():
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.history.service import require_history_access
    from invoice_intake.state import build_stores

    stores = build_stores("memory")
    with pytest.raises(AppError) as exc:
        require_history_access(stores.entitlements, None)
    assert exc.value.code.value == "AUTH_REQUIRED"

    with pytest.raises(AppError) as exc:
        require_history_access(stores.entitlements, "u1")
    assert exc.value.code.value == "PLAN_REQUIRED"
    assert exc.value.status_code == 403

    stores.entitlements.upsert("u1", plan="pro", status="trialing")
    assert require_history_access(stores.entitlements, "u1") == "u1"


def test_pro_completion_is_saved_to_history(fake_client, png_bytes):
    from invoice_intake.core.db import SessionLocal
    from invoice_intake.modules.history.service import list_history
    from invoice_intake.modules.sessions.service import create_session, process_session
    from invoice_intake.state import build_stores

    stores = build_stores()
    stores.entitlements.upsert("pro-user", plan="pro", status="active")
    url = f"data:image/png;base64,{base64.b64encode(png_bytes).decode()}"
    with SessionLocal() as session:
        record = create_session(
            stores,
            owner_id="pro-user",
            file_name="scan.png",
            file_type="image/png",
            file_size=len(png_bytes),
        )
        asyncio.run(
            process_session(
                session,
                stores,
                fake_client(structured=[json.dumps(EXTRACTED)]),
                session_id=record.id,
                user_id="pro-user",
                client_ip=None,
                file_data_url=url,
            )
        )
        entries = list_history(session, user_id="pro-user")
        assert len(entries) == 1
        assert entries[0].vendor_name == "Northwind Traders"
        assert entries[0].fields_count == 5
        assert entries[0].line_items_count == 1


def test_history_api():
    from fastapi.testclient import TestClient

    from invoice_intake.core.db import SessionLocal
    from invoice_intake.core.security import create_access_token
    from invoice_intake.main import app
    from invoice_intake.modules.history.service import save_history_entry
    from invoice_intake.state import build_stores

    app.state.stores = build_stores()
    client = TestClient(app)

    assert client.get("/api/history").status_code == 401

    headers = {"Authorization": f"Bearer {create_access_token(subject='u9')}"}
    resp = client.get("/api/history", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "PLAN_REQUIRED"

    app.state.stores.entitlements.upsert("u9", plan="pro", status="active")
    with SessionLocal() as session:
        entry = save_history_entry(
            session, user_id="u9", record=_record("s9"), extracted_data=EXTRACTED
        )
        entry_id = str(entry.id)

    listing = client.get("/api/history", headers=headers).json()
    assert listing["retentionDays"] == 30
    assert listing["items"][0]["invoiceNumber"] == "INV-2041"
    assert "extractedData" not in listing["items"][0]

    detail = client.get(f"/api/history/{entry_id}", headers=headers).json()
    assert detail["extractedData"]["fields"][0]["value"] == "Northwind Traders"

    resp = client.get("/api/history/not-a-uuid", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "HISTORY_NOT_FOUND"
