from __future__ import annotations
from typing import Optional

from facturflow.config import Settings
from facturflow.services.client_service import ClientService
from facturflow.services.company_service import CompanyService
from facturflow.services.document_service import DocumentService
from facturflow.services.einvoice_service import EInvoiceService
from facturflow.services.einvoice_sync_service import EInvoiceSyncService
from facturflow.services.quote_response_service import QuoteResponseService
from facturflow.services.sequence_service import SequenceService
from facturflow.services.status_machine import StatusService
from facturflow.services.superpdp_client import SuperPDPClient
from facturflow.storage.stores import Stores


class Services:
    """Assemble les services autour d'un même jeu de dépôts."""

    def __init__(self, settings: Settings, provider=None) -> None:
        self.settings = settings
        self.stores = Stores(settings.data_dir, backup_keep=settings.backup_keep)

        self.companies = CompanyService(self.stores.companies)
        self.clients = ClientService(self.stores.clients, self.stores.documents)
        self.sequences = SequenceService(self.stores.counters, settings.numbering, self.companies.prefix_lookup)
        self.documents = DocumentService(
            self.stores.documents, self.sequences, self.clients, settings.default_vat_rate
        )
        self.status = StatusService(self.stores.documents)
        self.quote_responses = QuoteResponseService(self.stores.documents)

        self.provider = provider or SuperPDPClient(settings.superpdp)
        self.einvoice_sync = EInvoiceSyncService(
            self.stores.documents, self.stores.sync_state, self.provider, settings.sync_max_pages
        )
        self.einvoice = EInvoiceService(self.stores.documents, self.clients, self.companies, self.provider)


def build_services(settings: Settings, provider: Optional[object] = None) -> Services:
    return Services(settings, provider)
