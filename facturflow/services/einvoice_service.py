from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from facturflow.errors import DocumentNotFound, InvalidState
from facturflow.models.client import Address, Client
from facturflow.models.common import utcnow
from facturflow.models.company import Company
from facturflow.models.document import Document
from facturflow.services.client_service import ClientService
from facturflow.services.company_service import CompanyService
from facturflow.storage.json_repo import JsonRepository, Row

logger = logging.getLogger(__name__)

# 380 = facture commerciale (UNTDID 1001)
INVOICE_TYPE_CODE = 380
CURRENCY = "EUR"
PEPPOL_PROCESS = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"
PEPPOL_SPECIFICATION = f"urn:cen.eu:en16931:2017#compliant#{PEPPOL_PROCESS}"
SCHEME_SIREN = "0225"
SCHEME_SIRET = "0002"
UNIT_CODE = "C62"
PAYMENT_MEANS_TRANSFER = "30"
FRANCHISE_CODE = "VATEX-FR-FRANCHISE"
FRANCHISE_TEXT = "TVA non applicable, article 293 B du CGI"
INITIAL_EINVOICE_STATUS = "api:uploaded"


def _amount(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def _postal(address: Address) -> Dict[str, str]:
    out = {"country_code": "FR" if address.country in (None, "", "France") else address.country}
    if address.line1:
        out["address_line1"] = address.line1
    if address.city:
        out["city"] = address.city
    if address.postal_code:
        out["post_code"] = address.postal_code
    return out


def _party(name: str, address: Address, siren: Optional[str], siret: Optional[str], vat: Optional[str]) -> Dict[str, Any]:
    party: Dict[str, Any] = {"name": name, "postal_address": _postal(address)}
    # SIREN = adresse Peppol ; SIRET = identifiant légal
    if siren:
        party["electronic_address"] = {"scheme": SCHEME_SIREN, "value": siren}
    if siret:
        party["legal_registration_identifier"] = {"scheme": SCHEME_SIRET, "value": siret}
    if vat:
        party["vat_identifier"] = vat
    return party


def build_en16931(invoice: Document, client: Client, seller: Company) -> Dict[str, Any]:
    """Facture au modèle sémantique européen EN16931 (JSON)."""
    rate = Decimal(invoice.vat_rate)
    category = "Z" if rate == 0 else "S"

    seller_party = _party(seller.name or "FacturFlow", seller.address, seller.siren, seller.siret, seller.vat_number)
    if seller.email:
        seller_party["contact"] = {"email_address": str(seller.email)}
    buyer_party = _party(client.display_name, client.address, client.siren, client.siret, client.vat_number)
    buyer_party["contact"] = {"email_address": str(client.email)}

    lines = []
    for idx, ln in enumerate(sorted(invoice.lines, key=lambda x: x.order), start=1):
        vat_info: Dict[str, str] = {"invoiced_item_vat_category_code": category}
        if rate > 0:
            vat_info["invoiced_item_vat_rate"] = _amount(rate)
        lines.append({
            "identifier": str(idx),
            "invoiced_quantity": format(ln.quantity.normalize(), "f"),
            "invoiced_quantity_code": UNIT_CODE,
            "net_amount": _amount(ln.subtotal),
            "item_information": {"name": ln.description},
            "vat_information": vat_info,
            "price_details": {"item_net_price": _amount(ln.unit_price)},
        })

    totals: Dict[str, Any] = {
        "sum_invoice_lines_amount": _amount(invoice.subtotal),
        "total_without_vat": _amount(invoice.net_ht),
        "total_vat_amount": {"currency_code": CURRENCY, "value": _amount(invoice.tax_total)},
        "total_with_vat": _amount(invoice.total),
        "amount_due_for_payment": _amount(invoice.net_to_pay),
    }
    if invoice.deposit_amount > 0:
        totals["paid_amount"] = _amount(invoice.deposit_amount)

    breakdown: Dict[str, Any] = {
        "vat_category_code": category,
        "vat_category_taxable_amount": _amount(invoice.net_ht),
        "vat_category_tax_amount": _amount(invoice.tax_total),
    }
    if rate > 0:
        breakdown["vat_category_rate"] = _amount(rate)
    else:
        # franchise en base (auto-entrepreneurs)
        breakdown["vat_exemption_reason_code"] = FRANCHISE_CODE
        breakdown["vat_exemption_reason"] = FRANCHISE_TEXT

    payload: Dict[str, Any] = {
        "type_code": INVOICE_TYPE_CODE,
        "number": invoice.number,
        "issue_date": invoice.issue_date.isoformat(),
        "currency_code": CURRENCY,
        "process_control": {
            "business_process_type": PEPPOL_PROCESS,
            "specification_identifier": PEPPOL_SPECIFICATION,
        },
        "seller": seller_party,
        "buyer": buyer_party,
        "lines": lines,
        "totals": totals,
        "vat_break_down": [breakdown],
    }
    if invoice.due_date:
        payload["payment_due_date"] = invoice.due_date.isoformat()
    if invoice.notes:
        payload["notes"] = [{"note": invoice.notes}]
    if seller.iban:
        transfer: Dict[str, Any] = {"payment_account_identifier": {"scheme": "IBAN", "value": seller.iban}}
        if seller.bic:
            transfer["payment_service_provider_identifier"] = seller.bic
        payload["payment_instructions"] = {
            "payment_means_type_code": PAYMENT_MEANS_TRANSFER,
            "credit_transfers": [transfer],
        }
    return payload


class EInvoiceService:
    """Envoi d'une facture sur le réseau Peppol via la plateforme."""

    def __init__(self, documents: JsonRepository, clients: ClientService, companies: CompanyService, provider) -> None:
        self.documents = documents
        self.clients = clients
        self.companies = companies
        self.provider = provider

    def send(self, user_id: str, invoice_id: str) -> Document:
        """
        Envoie la facture une seule fois : la facture est réservée (marqueur
        einvoice_sending) avant l'appel à la plateforme, puis libérée en cas d'échec.
        """
        row = self.documents.find_one(
            lambda r: r.get("id") == invoice_id and r.get("user_id") == user_id and r.get("kind") == "INVOICE"
        )
        if row is None:
            raise DocumentNotFound(invoice_id)
        invoice = Document.model_validate(row)
        if invoice.einvoice_ref:
            raise InvalidState(f"la facture {invoice.number} a déjà été envoyée électroniquement")

        client = self.clients.get(invoice.client_id, user_id)
        if not client.siren:
            raise InvalidState("le client doit avoir un SIREN pour recevoir une facture électronique")
        seller = self.companies.get(user_id)
        if seller is None or not seller.siren:
            raise InvalidState("le SIREN du vendeur doit être renseigné pour envoyer une facture électronique")

        self._reserve(invoice)
        try:
            xml = self.provider.convert_invoice_to_xml(build_en16931(invoice, client, seller))
            response = self.provider.send_invoice_xml(xml)
        except Exception:
            self.documents.mutate(invoice_id, _release)
            raise
        initial = response.events[0].status_code if response.events else INITIAL_EINVOICE_STATUS

        def _record(r: Row) -> Row:
            now = utcnow()
            r.update(
                einvoice_ref=str(response.id),
                einvoice_status=initial,
                einvoice_sent_at=now,
                einvoice_sending=False,
                updated_at=now,
            )
            if response.events:
                r["einvoice_event_id"] = response.events[0].id
            return r

        saved = self.documents.mutate(invoice_id, _record)
        logger.info("Facture %s envoyée (réf. %s, statut %s)", invoice.number, response.id, initial)
        return Document.model_validate(saved)

    def _reserve(self, invoice: Document) -> None:
        def _mark(r: Row) -> Row:
            if r.get("einvoice_ref") or r.get("einvoice_sending"):
                raise InvalidState(f"la facture {invoice.number} est déjà envoyée ou en cours d'envoi")
            r["einvoice_sending"] = True
            return r

        self.documents.mutate(invoice.id, _mark)


def _release(r: Row) -> Row:
    r["einvoice_sending"] = False
    return r
