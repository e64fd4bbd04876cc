import pytest

from facturflow.models.einvoice import InvoiceEventsPage
from facturflow.services.einvoice_sync_service import EInvoiceSyncService

from conftest import USER, FakeProvider, event


def _invoice_with_ref(services, client, ref):
    inv = services.documents.create_invoice(USER, client.id, [{"description": "Prestation", "quantity": 1, "unit_price": 80}])
    services.stores.documents.mutate(inv.id, lambda r: {**r, "einvoice_ref": str(ref), "einvoice_status": "api:uploaded"})
    return inv.id


def _einvoice_status(services, doc_id):
    return services.documents.get(USER, doc_id).einvoice_status


def test_two_pages_are_applied_and_cursor_persisted(services, provider, client_row):
    ids = {ref: _invoice_with_ref(services, client_row, ref) for ref in (101, 102, 103, 104, 105)}
    provider.pages = [
        InvoiceEventsPage(data=[event(11, 101, "fr:204"), event(12, 102, "fr:205"), event(13, 103, "fr:206")], has_after=True),
        InvoiceEventsPage(data=[event(14, 104, "fr:208"), event(15, 105, "fr:212")], has_after=False),
    ]

    result = services.einvoice_sync.sync()

    assert result.processed == 5
    assert result.last_event_id == 15
    assert provider.calls == [0, 13]
    assert services.einvoice_sync.load_state().last_event_id == 15
    assert _einvoice_status(services, ids[105]) == "fr:212"


def test_rerun_with_empty_page_is_a_no_op(services, provider, client_row):
    doc_id = _invoice_with_ref(services, client_row, 101)
    provider.pages = [InvoiceEventsPage(data=[event(3, 101, "fr:205")], has_after=False)]
    services.einvoice_sync.sync()

    result = services.einvoice_sync.sync()

    assert result.processed == 0
    assert result.last_event_id == 3
    assert provider.calls[-1] == 3
    assert _einvoice_status(services, doc_id) == "fr:205"


def test_latest_event_wins_even_out_of_order(services, provider, client_row):
    doc_id = _invoice_with_ref(services, client_row, 101)
    provider.pages = [InvoiceEventsPage(data=[event(9, 101, "fr:208"), event(8, 101, "fr:205")])]

    result = services.einvoice_sync.sync()

    assert _einvoice_status(services, doc_id) == "fr:208"
    assert result.processed == 1
    assert result.last_event_id == 9


def test_events_of_unknown_invoices_are_skipped(services, provider, client_row):
    doc_id = _invoice_with_ref(services, client_row, 101)
    provider.pages = [InvoiceEventsPage(data=[event(1, 999, "fr:204"), event(2, 101, "fr:206")])]

    result = services.einvoice_sync.sync()

    assert result.processed == 1
    assert result.last_event_id == 2
    assert _einvoice_status(services, doc_id) == "fr:206"


def test_failure_keeps_cursor_and_retry_is_idempotent(services, provider, client_row):
    first = _invoice_with_ref(services, client_row, 101)
    second = _invoice_with_ref(services, client_row, 102)
    page1 = InvoiceEventsPage(data=[event(1, 101, "fr:204"), event(2, 101, "fr:205")], has_after=True)
    page2 = InvoiceEventsPage(data=[event(3, 102, "fr:206")], has_after=False)
    provider.pages = [page1]
    provider.fail_on_call = 2

    with pytest.raises(RuntimeError):
        services.einvoice_sync.sync()

    # la facture déjà traitée le reste, le curseur n'a pas bougé
    assert _einvoice_status(services, first) == "fr:205"
    assert services.einvoice_sync.load_state().last_event_id == 0

    provider.fail_on_call = None
    provider.pages = [page1, page2]
    result = services.einvoice_sync.sync()

    assert result.processed == 1
    assert result.last_event_id == 3
    assert _einvoice_status(services, first) == "fr:205"
    assert _einvoice_status(services, second) == "fr:206"


def test_page_limit_stops_the_loop_and_keeps_progress(services, client_row):
    doc_id = _invoice_with_ref(services, client_row, 101)
    provider = FakeProvider([
        InvoiceEventsPage(data=[event(1, 101, "fr:204")], has_after=True),
        InvoiceEventsPage(data=[event(2, 101, "fr:205")], has_after=True),
        InvoiceEventsPage(data=[event(3, 101, "fr:206")], has_after=True),
    ])
    engine = EInvoiceSyncService(services.stores.documents, services.stores.sync_state, provider, max_pages=2)

    result = engine.sync()

    assert result.pages == 2
    assert result.last_event_id == 2
    assert _einvoice_status(services, doc_id) == "fr:205"
    assert engine.sync().last_event_id == 3


def test_cursor_row_is_created_lazily(services):
    state = services.einvoice_sync.load_state()
    assert state.last_event_id == 0
    assert services.stores.sync_state.count(lambda r: True) == 1
    services.einvoice_sync.load_state()
    assert services.stores.sync_state.count(lambda r: True) == 1
