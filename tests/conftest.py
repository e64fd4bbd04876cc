from __future__ import annotations
from typing import List

import pytest
from fastapi.testclient import TestClient

from facturflow.api.app import create_app
from facturflow.config import Settings
from facturflow.models.client import Client
from facturflow.models.einvoice import InvoiceEvent, InvoiceEventsPage, InvoiceSendResponse
from facturflow.services.registry import Services

CRON_SECRET = "s3cr3t"
USER = "user-1"


class FakeProvider:
    """Plateforme e-facture en mémoire : pages d'évènements préparées à l'avance."""

    def __init__(self, pages: List[InvoiceEventsPage] = None):
        self.pages = list(pages or [])
        self.calls: List[int] = []
        self.fail_on_call = None
        self.sent = []

    def get_invoice_events(self, starting_after_id: int = 0) -> InvoiceEventsPage:
        self.calls.append(starting_after_id)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("plateforme injoignable")
        if not self.pages:
            return InvoiceEventsPage(data=[], has_after=False)
        return self.pages.pop(0)

    def convert_invoice_to_xml(self, invoice):
        self.sent.append(invoice)
        return "<Invoice/>"

    def send_invoice_xml(self, xml):
        return InvoiceSendResponse(
            id=4242,
            events=[InvoiceEvent(id=7, invoice_id=4242, status_code="api:uploaded")],
        )


def event(event_id: int, invoice_id: int, code: str) -> InvoiceEvent:
    return InvoiceEvent(id=event_id, invoice_id=invoice_id, status_code=code)


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data", cron_secret=CRON_SECRET, backup_keep=0)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def services(settings, provider):
    return Services(settings, provider)


@pytest.fixture
def client_row(services):
    return services.clients.add_client(Client(user_id=USER, email="alice@atelier-martin.fr", first_name="Alice", last_name="Martin"))


@pytest.fixture
def app(settings, provider):
    return create_app(settings, provider)


@pytest.fixture
def http(app):
    return TestClient(app)
