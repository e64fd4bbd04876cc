from __future__ import annotations
from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Literal, Optional, Tuple, get_args
from datetime import date, datetime
from decimal import Decimal
from .common import TimeStamped, gen_id

DocumentKind = Literal["QUOTE", "INVOICE", "DEPOSIT", "RECEIPT"]

QuoteStatus = Literal["DRAFT", "SENT", "VIEWED", "ACCEPTED", "REJECTED", "CANCELLED"]
InvoiceStatus = Literal["DRAFT", "SENT", "VIEWED", "OVERDUE", "REMINDED", "PAID"]
DepositStatus = Literal["DRAFT", "SENT", "PAID"]
ReceiptStatus = Literal["PAID"]
DocumentStatus = Literal[
    "DRAFT", "SENT", "VIEWED", "ACCEPTED", "REJECTED", "CANCELLED", "OVERDUE", "REMINDED", "PAID"
]

STATUSES_BY_KIND: Dict[str, Tuple[str, ...]] = {
    "QUOTE": get_args(QuoteStatus),
    "INVOICE": get_args(InvoiceStatus),
    "DEPOSIT": get_args(DepositStatus),
    "RECEIPT": get_args(ReceiptStatus),
}

DOCUMENT_KINDS: Tuple[str, ...] = get_args(DocumentKind)

DiscountType = Literal["percentage", "amount"]
PaymentMethod = Literal["CASH", "CHECK", "CARD", "TRANSFER"]
LineCategory = Literal["labour", "material"]

ZERO = Decimal("0.00")


class LineItem(BaseModel):
    id: str = Field(default_factory=gen_id)
    description: str
    quantity: Decimal = Decimal("1")
    unit: str = "unité"
    unit_price: Decimal = ZERO
    vat_rate: Decimal = ZERO
    order: int = 0
    category: Optional[LineCategory] = None
    # snapshot des montants de la ligne (arrondis 2 décimales)
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO


class Discount(BaseModel):
    type: DiscountType
    value: Decimal = ZERO


class PaymentLinks(BaseModel):
    stripe: Optional[str] = None
    paypal: Optional[str] = None
    gocardless: Optional[str] = None


class ReceiptDetails(BaseModel):
    description: str = "Paiement reçu"
    payment_method: PaymentMethod = "CASH"


class Document(TimeStamped):
    id: str = Field(default_factory=gen_id)
    user_id: str
    client_id: str
    kind: DocumentKind
    number: str
    status: DocumentStatus = "DRAFT"

    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None  # factures / acomptes
    valid_until: Optional[date] = None  # devis

    vat_rate: Decimal = ZERO
    lines: List[LineItem] = Field(default_factory=list)

    subtotal: Decimal = ZERO
    discount: Optional[Discount] = None
    discount_amount: Decimal = ZERO
    net_ht: Decimal = ZERO
    tax_total: Decimal = ZERO
    total: Decimal = ZERO
    deposit_amount: Decimal = ZERO
    net_to_pay: Decimal = ZERO

    notes: Optional[str] = None
    client_note: Optional[str] = None

    # détails typés par nature de document
    invoice_type: Optional[str] = None
    payment_links: Optional[PaymentLinks] = None
    receipt: Optional[ReceiptDetails] = None
    auto_generated: bool = False
    related_document_id: Optional[str] = None

    # devis : liens publics d'acceptation / refus
    accept_token: Optional[str] = None
    refuse_token: Optional[str] = None
    responded_at: Optional[datetime] = None

    # factures : suivi facture électronique
    einvoice_ref: Optional[str] = None
    einvoice_status: Optional[str] = None
    einvoice_event_id: Optional[int] = None
    einvoice_sent_at: Optional[datetime] = None
    # envoi en cours vers la plateforme
    einvoice_sending: bool = False

    class Config:
        extra = "ignore"

    @model_validator(mode="after")
    def _check_coherence(self) -> "Document":
        if self.status not in STATUSES_BY_KIND[self.kind]:
            raise ValueError(f"statut {self.status} impossible pour un document {self.kind}")
        if self.deposit_amount > self.total:
            raise ValueError("l'acompte ne peut pas dépasser le total")
        return self

    @property
    def is_mutable(self) -> bool:
        return self.status == "DRAFT"
