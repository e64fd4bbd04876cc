from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

SYNC_STATE_ID = "singleton"


class InvoiceEvent(BaseModel):
    """Évènement de cycle de vie publié par la plateforme de facturation électronique."""
    id: int
    invoice_id: int
    status_code: str
    status_text: Optional[str] = None
    created_at: Optional[datetime] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class InvoiceEventsPage(BaseModel):
    data: List[InvoiceEvent] = Field(default_factory=list)
    has_after: bool = False


class InvoiceSendResponse(BaseModel):
    """Réponse de la plateforme à l'envoi d'une facture."""
    id: int
    company_id: Optional[int] = None
    created_at: Optional[datetime] = None
    direction: Optional[str] = None
    events: List[InvoiceEvent] = Field(default_factory=list)


class SyncState(BaseModel):
    id: str = SYNC_STATE_ID
    last_event_id: int = 0
    updated_at: Optional[datetime] = None


class SyncResult(BaseModel):
    processed: int = 0
    last_event_id: int = 0
    pages: int = 0


EINVOICE_STATUS_LABELS: Dict[str, str] = {
    "api:uploaded": "Transmise à la plateforme",
    "fr:204": "Mise à disposition",
    "fr:205": "Prise en charge",
    "fr:206": "Reçue par le destinataire",
    "fr:207": "Refusée par le destinataire",
    "fr:208": "Acceptée par le destinataire",
    "fr:209": "Litige ouvert",
    "fr:210": "Litige résolu",
    "fr:211": "Annulée",
    "fr:212": "Paiement reçu",
}


def einvoice_status_label(code: str) -> str:
    return EINVOICE_STATUS_LABELS.get(code, code)
