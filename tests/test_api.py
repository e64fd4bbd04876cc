from datetime import date, timedelta

from facturflow.models.einvoice import InvoiceEventsPage

from conftest import CRON_SECRET, USER, event

AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}
AS_USER = {"X-User-Id": USER}


def _services(http):
    return http.app.state.services


def _client_id(http):
    res = http.post("/api/clients", json={"email": "claire@menuiserie-roux.fr", "company_name": "Menuiserie Roux"}, headers=AS_USER)
    assert res.status_code == 201
    return res.json()["id"]


def _sent_quote(http):
    body = {
        "kind": "QUOTE",
        "client_id": _client_id(http),
        "lines": [{"description": "Cuisine", "quantity": 1, "unit_price": "1200"}],
        "vat_rate": 20,
    }
    doc = http.post("/api/documents", json=body, headers=AS_USER).json()
    http.post(f"/api/documents/{doc['id']}/status", json={"status": "SENT"}, headers=AS_USER)
    return _services(http).documents.get(USER, doc["id"])


# ---------- Cron ---------- #

def test_cron_requires_the_secret(http):
    for path in ("/api/cron/update-overdue", "/api/cron/update-expired-quotes", "/api/cron/sync-einvoice-events"):
        assert http.get(path).status_code == 401
        res = http.get(path, headers={"Authorization": "Bearer wrong"})
        assert res.status_code == 401
        assert res.json() == {"error": "Unauthorized"}


def test_cron_rejects_everything_without_configured_secret(tmp_path, provider):
    from fastapi.testclient import TestClient

    from facturflow.api.app import create_app
    from facturflow.config import Settings

    app = create_app(Settings(data_dir=tmp_path / "d", cron_secret=None), provider)
    res = TestClient(app).get("/api/cron/update-overdue", headers={"Authorization": "Bearer "})
    assert res.status_code == 401


def test_overdue_cron(http):
    services = _services(http)
    cid = _client_id(http)
    inv = services.documents.create_invoice(
        USER, cid, [{"description": "Pose", "quantity": 1, "unit_price": 10}],
        issue_date=date.today() - timedelta(days=40), due_date=date.today() - timedelta(days=10),
    )
    services.status.send(inv.id)

    res = http.get("/api/cron/update-overdue", headers=AUTH)
    assert res.status_code == 200
    assert res.json() == {"success": True, "updated": 1}
    assert http.get("/api/cron/update-overdue", headers=AUTH).json() == {"success": True, "updated": 0}


def test_expired_quotes_cron(http):
    res = http.get("/api/cron/update-expired-quotes", headers=AUTH)
    assert res.json() == {"success": True, "updated": 0}


def test_sync_cron(http, provider):
    services = _services(http)
    cid = _client_id(http)
    inv = services.documents.create_invoice(USER, cid, [{"description": "Pose", "quantity": 1, "unit_price": 10}])
    services.stores.documents.mutate(inv.id, lambda r: {**r, "einvoice_ref": "77"})
    provider.pages = [InvoiceEventsPage(data=[event(5, 77, "fr:206")], has_after=False)]

    res = http.get("/api/cron/sync-einvoice-events", headers=AUTH)

    assert res.status_code == 200
    assert res.json() == {"success": True, "processed": 1, "lastEventId": 5}


def test_sync_cron_failure_is_500(http, provider):
    provider.fail_on_call = 1
    res = http.get("/api/cron/sync-einvoice-events", headers=AUTH)
    assert res.status_code == 500
    assert "error" in res.json()
    assert _services(http).einvoice_sync.load_state().last_event_id == 0


# ---------- Liens publics ---------- #

def test_accept_link_redirects_to_success_then_already_accepted(http):
    q = _sent_quote(http)

    res = http.get(f"/api/public/devis/accept/{q.accept_token}", follow_redirects=False)
    assert res.status_code == 307
    assert res.headers["location"] == f"/public/devis/accepte?ref={q.id}"

    res = http.get(f"/api/public/devis/refuse/{q.refuse_token}", follow_redirects=False)
    assert res.headers["location"] == "/public/devis/erreur?raison=deja_accepte"


def test_refuse_link_with_note(http):
    q = _sent_quote(http)
    res = http.get(f"/api/public/devis/refuse/{q.refuse_token}", params={"note": "Délai trop long"}, follow_redirects=False)
    assert res.headers["location"] == f"/public/devis/refuse?ref={q.id}"
    assert _services(http).documents.get(USER, q.id).client_note == "Délai trop long"


def test_invalid_token_redirect(http):
    res = http.get("/api/public/devis/accept/forged", follow_redirects=False)
    assert res.headers["location"] == "/public/devis/erreur?raison=token_invalide"


def test_public_pages_render(http):
    assert "Devis accepté" in http.get("/public/devis/accepte?ref=x").text
    page = http.get("/public/devis/erreur?raison=deja_refuse")
    assert page.status_code == 200
    assert "déjà été refusé" in page.text


# ---------- Documents ---------- #

def test_totals_preview_matches_saved_document(http):
    body = {"lines": [{"description": "A", "quantity": 2, "unit_price": 100}], "vat_rate": 20}
    preview = http.post("/api/documents/totals", json=body).json()
    assert preview["total_ttc"] == "240.00"
    assert preview["net_to_pay"] == "240.00"

    doc = http.post("/api/documents", json={"kind": "INVOICE", "client_id": _client_id(http), **body}, headers=AS_USER).json()
    assert doc["total"] == preview["total_ttc"]
    assert doc["tax_total"] == preview["tax_total"]


def test_next_number_is_a_preview(http):
    year = date.today().year
    first = http.get("/api/documents/next-number", params={"kind": "invoice"}, headers=AS_USER).json()
    again = http.get("/api/documents/next-number", params={"kind": "invoice"}, headers=AS_USER).json()
    assert first == again == {"kind": "INVOICE", "number": f"FAC-{year}-0001"}


def test_error_mapping(http):
    cid = _client_id(http)
    assert http.get("/api/documents/missing", headers=AS_USER).status_code == 404

    bad = {"kind": "INVOICE", "client_id": cid, "lines": [{"description": "A", "quantity": -1, "unit_price": 1}]}
    res = http.post("/api/documents", json=bad, headers=AS_USER)
    assert res.status_code == 422
    assert "quantité" in res.json()["error"]

    ok = {"kind": "INVOICE", "client_id": cid, "lines": [{"description": "A", "quantity": 1, "unit_price": 1}]}
    doc = http.post("/api/documents", json=ok, headers=AS_USER).json()
    res = http.post(f"/api/documents/{doc['id']}/status", json={"status": "PAID"}, headers=AS_USER)
    assert res.status_code == 409
    assert "DRAFT → PAID" in res.json()["error"]


def test_documents_are_scoped_by_user(http):
    q = _sent_quote(http)
    assert http.get(f"/api/documents/{q.id}", headers={"X-User-Id": "other"}).status_code == 404
    listed = http.get("/api/documents", params={"kind": "quote"}, headers=AS_USER).json()
    assert [d["id"] for d in listed] == [q.id]


def test_quote_links(http):
    q = _sent_quote(http)
    links = http.get(f"/api/documents/{q.id}/links", headers=AS_USER).json()
    assert links["accept_url"].endswith(f"/api/public/devis/accept/{q.accept_token}")


def test_totals_preview_rejects_huge_amounts(http):
    body = {"lines": [{"description": "A", "quantity": "1e27", "unit_price": 1}], "vat_rate": 20}
    assert http.post("/api/documents/totals", json=body).status_code == 422
