from __future__ import annotations
import logging
import secrets
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from facturflow.errors import DocumentNotFound, InvalidInput, InvalidState
from facturflow.models.common import gen_id, utcnow
from facturflow.models.document import (
    DOCUMENT_KINDS,
    Discount,
    Document,
    LineItem,
    PaymentLinks,
    ReceiptDetails,
)
from facturflow.services.client_service import ClientService
from facturflow.services.sequence_service import SequenceService
from facturflow.services.status_machine import INITIAL_STATUS
from facturflow.services.totals import compute_line, compute_totals, to_decimal
from facturflow.storage.json_repo import JsonRepository, Row

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_DAYS = 30
DEFAULT_PAYMENT_DAYS = 30

# champs modifiables tant que le document est en brouillon
EDITABLE_FIELDS = frozenset({
    "client_id", "lines", "vat_rate", "discount", "deposit_amount",
    "issue_date", "due_date", "valid_until", "notes",
    "invoice_type", "payment_links",
})

_COMMON = {"lines", "vat_rate", "discount", "deposit_amount", "issue_date", "notes"}
CREATE_FIELDS = {
    "QUOTE": frozenset(_COMMON | {"valid_until"}),
    "INVOICE": frozenset(_COMMON | {"due_date", "invoice_type", "payment_links", "related_document_id"}),
    "DEPOSIT": frozenset({"amount", "vat_rate", "description", "due_date", "notes"}),
    "RECEIPT": frozenset({"amount", "description", "payment_method", "related_document_id"}),
}


def new_token() -> str:
    return secrets.token_urlsafe(32)


# ---------- Helpers ---------- #

def _line_value(line: Any, name: str, default: Any = None) -> Any:
    if isinstance(line, Mapping):
        return line.get(name, default)
    return getattr(line, name, default)


def build_lines(raw_lines: Iterable[Any], vat_rate: Any) -> List[LineItem]:
    """Lignes normalisées avec leurs montants (HT / TVA / TTC) figés."""
    out: List[LineItem] = []
    for idx, raw in enumerate(raw_lines or []):
        description = (_line_value(raw, "description") or "").strip()
        if not description:
            raise InvalidInput(f"ligne {idx + 1} : description obligatoire")
        quantity = _line_value(raw, "quantity", 1)
        unit_price = _line_value(raw, "unit_price", 0)
        ht, tva, ttc = compute_line(quantity, unit_price, vat_rate)
        out.append(LineItem(
            description=description,
            quantity=to_decimal(quantity, f"ligne {idx + 1}, quantité"),
            unit=_line_value(raw, "unit") or "unité",
            unit_price=to_decimal(unit_price, f"ligne {idx + 1}, prix unitaire"),
            vat_rate=to_decimal(vat_rate, "taux de TVA"),
            order=_line_value(raw, "order") if _line_value(raw, "order") is not None else idx,
            category=_line_value(raw, "category"),
            subtotal=ht,
            tax_amount=tva,
            total=ttc,
        ))
    out.sort(key=lambda ln: ln.order)
    return out


def apply_totals(row: Row) -> Row:
    """Recalcule les lignes et les montants d'une ligne de stockage (sur place)."""
    lines = build_lines(row.get("lines") or [], row["vat_rate"])
    totals = compute_totals(lines, row["vat_rate"], row.get("discount"), row.get("deposit_amount"))
    row["lines"] = [ln.model_dump() for ln in lines]
    row.update(
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        net_ht=totals.net_ht,
        tax_total=totals.tax_total,
        total=totals.total_ttc,
        deposit_amount=totals.deposit_amount,
        net_to_pay=totals.net_to_pay,
    )
    return row


def _validated(row: Row) -> Document:
    try:
        return Document.model_validate(row)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ())) or "document"
        raise InvalidInput(f"{loc} : {err['msg']}") from None


# ---------- Service ---------- #

class DocumentService:
    """
    Création et édition des documents (devis, factures, acomptes, reçus).
    Le numéro est attribué à la création ; les montants sont toujours
    recalculés côté serveur avec la même fonction que l'aperçu.
    """

    def __init__(
        self,
        repo: JsonRepository,
        sequences: SequenceService,
        clients: ClientService,
        default_vat_rate: Decimal = Decimal("20"),
    ) -> None:
        self.repo = repo
        self.sequences = sequences
        self.clients = clients
        self.default_vat_rate = default_vat_rate

    # ----- Lecture ----- #

    def get(self, user_id: str, document_id: str) -> Document:
        row = self.repo.get_by_id(document_id)
        if row is None or row.get("user_id") != user_id:
            raise DocumentNotFound(document_id)
        return Document.model_validate(row)

    def list_documents(self, user_id: str, kind: Optional[str] = None, status: Optional[str] = None) -> List[Document]:
        rows = self.repo.find(
            lambda r: r.get("user_id") == user_id
            and (kind is None or r.get("kind") == kind)
            and (status is None or r.get("status") == status)
        )
        docs = [Document.model_validate(r) for r in rows]
        docs.sort(key=lambda d: d.created_at, reverse=True)
        return docs

    # ----- Création ----- #

    def _insert(self, user_id: str, kind: str, fields: Dict[str, Any], *, status: Optional[str] = None) -> Document:
        """Attribue le numéro, calcule les montants puis enregistre en une écriture."""
        kind = (kind or "").upper()
        if kind not in DOCUMENT_KINDS:
            raise InvalidInput(f"nature de document inconnue : {kind!r}")
        self.clients.get(fields["client_id"], user_id)

        row: Row = {
            "id": gen_id(),
            "user_id": user_id,
            "kind": kind,
            "status": status or INITIAL_STATUS[kind],
            "vat_rate": self.default_vat_rate,
            **fields,
        }
        apply_totals(row)
        # validation complète avant de consommer un numéro
        _validated({**row, "number": "-"})

        row["number"] = self.sequences.next_number(user_id, kind)
        doc = _validated(row)
        self.repo.add(doc)
        logger.info("Document créé %s %s (total=%s)", kind, doc.number, doc.total)
        return doc

    def create_quote(
        self,
        user_id: str,
        client_id: str,
        lines: Iterable[Any],
        *,
        vat_rate: Any = None,
        discount: Optional[Discount | Mapping[str, Any]] = None,
        deposit_amount: Any = None,
        issue_date: Optional[date] = None,
        valid_until: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Document:
        issue = issue_date or date.today()
        return self._insert(user_id, "QUOTE", {
            "client_id": client_id,
            "lines": list(lines),
            "vat_rate": self.default_vat_rate if vat_rate is None else vat_rate,
            "discount": discount,
            "deposit_amount": deposit_amount,
            "issue_date": issue,
            "valid_until": valid_until or issue + timedelta(days=DEFAULT_VALIDITY_DAYS),
            "notes": notes,
            "accept_token": new_token(),
            "refuse_token": new_token(),
        })

    def create_invoice(
        self,
        user_id: str,
        client_id: str,
        lines: Iterable[Any],
        *,
        vat_rate: Any = None,
        discount: Optional[Discount | Mapping[str, Any]] = None,
        deposit_amount: Any = None,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        invoice_type: Optional[str] = None,
        payment_links: Optional[PaymentLinks | Mapping[str, Any]] = None,
        related_document_id: Optional[str] = None,
    ) -> Document:
        issue = issue_date or date.today()
        return self._insert(user_id, "INVOICE", {
            "client_id": client_id,
            "lines": list(lines),
            "vat_rate": self.default_vat_rate if vat_rate is None else vat_rate,
            "discount": discount,
            "deposit_amount": deposit_amount,
            "issue_date": issue,
            "due_date": due_date or issue + timedelta(days=DEFAULT_PAYMENT_DAYS),
            "notes": notes,
            "invoice_type": invoice_type,
            "payment_links": payment_links,
            "related_document_id": related_document_id,
        })

    def create_deposit(
        self,
        user_id: str,
        client_id: str,
        amount: Any,
        *,
        vat_rate: Any = None,
        description: str = "Acompte",
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Document:
        value = to_decimal(amount, "montant de l'acompte")
        if value <= 0:
            raise InvalidInput("montant de l'acompte : doit être strictement positif")
        return self._insert(user_id, "DEPOSIT", {
            "client_id": client_id,
            "lines": [{"description": description, "quantity": 1, "unit_price": value}],
            "vat_rate": self.default_vat_rate if vat_rate is None else vat_rate,
            "issue_date": date.today(),
            "due_date": due_date,
            "notes": notes,
        })

    def create_deposit_from_quote(self, user_id: str, quote_id: str) -> Document:
        """Acompte généré depuis un devis : créé directement en SENT, lié au devis."""
        # un seul acompte par devis : vérification et création sous le même verrou
        with self.repo.locked():
            quote = self.get(user_id, quote_id)
            if quote.kind != "QUOTE":
                raise DocumentNotFound(quote_id)
            if quote.deposit_amount <= 0:
                raise InvalidState(f"aucun acompte défini sur le devis {quote.number}")
            if self.repo.find_one(lambda r: r.get("kind") == "DEPOSIT" and r.get("related_document_id") == quote_id):
                raise InvalidState(f"un acompte existe déjà pour le devis {quote.number}")

            return self._insert(user_id, "DEPOSIT", {
                "client_id": quote.client_id,
                "lines": [{"description": f"Acompte sur devis {quote.number}", "quantity": 1, "unit_price": quote.deposit_amount}],
                "vat_rate": quote.vat_rate,
                "issue_date": date.today(),
                "due_date": quote.due_date or quote.valid_until,
                "notes": "Acompte automatique suite à l'acceptation du devis",
                "related_document_id": quote.id,
                "auto_generated": True,
            }, status="SENT")

    def create_receipt(
        self,
        user_id: str,
        client_id: str,
        amount: Any,
        *,
        description: str = "Paiement reçu",
        payment_method: str = "CASH",
        related_document_id: Optional[str] = None,
    ) -> Document:
        value = to_decimal(amount, "montant du reçu")
        if value <= 0:
            raise InvalidInput("montant du reçu : doit être strictement positif")
        try:
            details = ReceiptDetails(description=description, payment_method=payment_method)
        except ValidationError:
            raise InvalidInput(f"moyen de paiement inconnu : {payment_method!r}") from None
        # reçu : pas de TVA
        return self._insert(user_id, "RECEIPT", {
            "client_id": client_id,
            "lines": [{"description": description, "quantity": 1, "unit_price": value}],
            "vat_rate": 0,
            "issue_date": date.today(),
            "receipt": details,
            "related_document_id": related_document_id,
        })

    def create_document(self, user_id: str, kind: str, payload: Mapping[str, Any]) -> Document:
        """Point d'entrée générique (API) : dispatch selon la nature."""
        kind = (kind or "").upper()
        data = dict(payload)
        try:
            client_id = data.pop("client_id")
        except KeyError:
            raise InvalidInput("client_id : obligatoire") from None
        if kind not in CREATE_FIELDS:
            raise InvalidInput(f"nature de document inconnue : {kind!r}")
        unknown = set(data) - CREATE_FIELDS[kind]
        if unknown:
            raise InvalidInput(f"champ non supporté pour {kind} : {sorted(unknown)[0]}")

        if kind == "QUOTE":
            return self.create_quote(user_id, client_id, data.pop("lines", []), **data)
        if kind == "INVOICE":
            return self.create_invoice(user_id, client_id, data.pop("lines", []), **data)
        if kind == "DEPOSIT":
            return self.create_deposit(user_id, client_id, data.pop("amount", None), **data)
        return self.create_receipt(user_id, client_id, data.pop("amount", None), **data)

    # ----- Édition ----- #

    def update_draft(self, user_id: str, document_id: str, changes: Mapping[str, Any]) -> Document:
        """Modifie un brouillon et recalcule ses montants en une seule écriture."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInput(f"champ non modifiable : {sorted(unknown)[0]}")
        if "client_id" in changes:
            self.clients.get(changes["client_id"], user_id)

        def _apply(row: Row) -> Row:
            if row.get("status") != "DRAFT":
                raise InvalidState(f"document {row.get('number')} non modifiable (statut {row.get('status')})")
            row.update(changes)
            apply_totals(row)
            row["updated_at"] = utcnow()
            # seule la forme validée est écrite (modèles imbriqués compris)
            return _validated(row).model_dump()

        row = self.repo.mutate_one(lambda r: r.get("id") == document_id and r.get("user_id") == user_id, _apply)
        if row is None:
            raise DocumentNotFound(document_id)
        logger.info("Document modifié %s", row["number"])
        return Document.model_validate(row)

    def delete(self, user_id: str, document_id: str) -> None:
        """Suppression réservée aux brouillons et aux reçus non référencés."""
        with self.repo.locked():
            doc = self.get(user_id, document_id)
            if doc.status != "DRAFT" and doc.kind != "RECEIPT":
                raise InvalidState(f"document {doc.number} non supprimable (statut {doc.status})")
            if self.repo.count(lambda r: r.get("related_document_id") == document_id):
                raise InvalidState(f"document {doc.number} référencé par un autre document")
            self.repo.delete(document_id)
        logger.info("Document supprimé %s", doc.number)

    def duplicate_invoice(self, user_id: str, invoice_id: str) -> Document:
        src = self.get(user_id, invoice_id)
        if src.kind != "INVOICE":
            raise InvalidInput(f"seule une facture peut être dupliquée ({src.kind})")
        return self.create_invoice(
            user_id,
            src.client_id,
            [ln.model_dump() for ln in src.lines],
            vat_rate=src.vat_rate,
            discount=src.discount,
            notes=src.notes,
            invoice_type=src.invoice_type,
            payment_links=src.payment_links,
        )
