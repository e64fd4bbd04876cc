from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from facturflow.api.deps import current_user, get_services
from facturflow.models.document import Discount, Document, PaymentLinks
from facturflow.services.quote_response_service import build_quote_links
from facturflow.services.registry import Services
from facturflow.services.totals import Totals, compute_totals

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/documents",
    tags=["documents"],
)


# ---------- Schémas d'entrée ---------- #

class LineIn(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    unit: Optional[str] = None
    order: Optional[int] = None
    category: Optional[str] = None


class TotalsIn(BaseModel):
    lines: List[LineIn] = Field(default_factory=list)
    vat_rate: Decimal
    discount: Optional[Discount] = None
    deposit_amount: Optional[Decimal] = None


class DocumentIn(BaseModel):
    kind: str
    client_id: str
    lines: Optional[List[LineIn]] = None
    vat_rate: Optional[Decimal] = None
    discount: Optional[Discount] = None
    deposit_amount: Optional[Decimal] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    invoice_type: Optional[str] = None
    payment_links: Optional[PaymentLinks] = None
    related_document_id: Optional[str] = None
    # acomptes / reçus
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    payment_method: Optional[str] = None


class DocumentPatch(BaseModel):
    client_id: Optional[str] = None
    lines: Optional[List[LineIn]] = None
    vat_rate: Optional[Decimal] = None
    discount: Optional[Discount] = None
    deposit_amount: Optional[Decimal] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    invoice_type: Optional[str] = None
    payment_links: Optional[PaymentLinks] = None


class StatusIn(BaseModel):
    status: str


# ---------- Routes ---------- #

@router.get("", response_model=List[Document])
def list_documents(
    kind: Optional[str] = None,
    status: Optional[str] = None,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return services.documents.list_documents(user_id, kind.upper() if kind else None, status)


@router.get("/next-number")
def next_number(kind: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    """Aperçu du prochain numéro (non consommé)."""
    return {"kind": kind.upper(), "number": services.sequences.peek(user_id, kind)}


@router.post("/totals", response_model=Totals)
def preview_totals(body: TotalsIn):
    # même fonction que l'enregistrement : l'aperçu et le document coïncident
    return compute_totals(body.lines, body.vat_rate, body.discount, body.deposit_amount)


@router.post("", response_model=Document, status_code=201)
def create_document(body: DocumentIn, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    payload: Dict[str, Any] = body.model_dump(exclude_unset=True, exclude={"kind"})
    return services.documents.create_document(user_id, body.kind, payload)


@router.get("/{document_id}", response_model=Document)
def get_document(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.documents.get(user_id, document_id)


@router.patch("/{document_id}", response_model=Document)
def update_document(
    document_id: str,
    body: DocumentPatch,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return services.documents.update_draft(user_id, document_id, changes)


@router.delete("/{document_id}", status_code=204)
def delete_document(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    services.documents.delete(user_id, document_id)
    return Response(status_code=204)


@router.post("/{document_id}/status", response_model=Document)
def change_status(
    document_id: str,
    body: StatusIn,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return services.status.transition(document_id, body.status, user_id=user_id)


@router.post("/{document_id}/duplicate", response_model=Document, status_code=201)
def duplicate_invoice(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.documents.duplicate_invoice(user_id, document_id)


@router.post("/{document_id}/deposit", response_model=Document, status_code=201)
def deposit_from_quote(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.documents.create_deposit_from_quote(user_id, document_id)


@router.post("/{document_id}/einvoice", response_model=Document)
def send_einvoice(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.einvoice.send(user_id, document_id)


@router.get("/{document_id}/links")
def quote_links(document_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    doc = services.documents.get(user_id, document_id)
    if doc.kind != "QUOTE" or not doc.accept_token or not doc.refuse_token:
        return {}
    return build_quote_links(services.settings.app_url, doc.accept_token, doc.refuse_token)
