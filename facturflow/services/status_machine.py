from __future__ import annotations
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

from facturflow.errors import DocumentNotFound, IllegalTransition, InvalidInput
from facturflow.models.common import utcnow
from facturflow.models.document import STATUSES_BY_KIND, Document
from facturflow.storage.json_repo import JsonRepository, Row

logger = logging.getLogger(__name__)

# Transitions autorisées (statut actuel → statuts possibles), par nature de document
TRANSITIONS: Dict[str, Dict[str, FrozenSet[str]]] = {
    "QUOTE": {
        "DRAFT": frozenset({"SENT"}),
        "SENT": frozenset({"VIEWED", "ACCEPTED", "REJECTED", "CANCELLED"}),
        "VIEWED": frozenset({"ACCEPTED", "REJECTED", "CANCELLED"}),
    },
    "INVOICE": {
        "DRAFT": frozenset({"SENT"}),
        "SENT": frozenset({"VIEWED", "OVERDUE", "PAID"}),
        "VIEWED": frozenset({"PAID"}),
        "OVERDUE": frozenset({"REMINDED", "PAID"}),
        "REMINDED": frozenset({"PAID"}),
    },
    "DEPOSIT": {
        "DRAFT": frozenset({"SENT"}),
        "SENT": frozenset({"PAID"}),
    },
    # un reçu naît payé : aucune transition
    "RECEIPT": {},
}

INITIAL_STATUS: Dict[str, str] = {
    "QUOTE": "DRAFT",
    "INVOICE": "DRAFT",
    "DEPOSIT": "DRAFT",
    "RECEIPT": "PAID",
}

# devis en attente de réponse du client
AWAITING_RESPONSE = frozenset({"SENT", "VIEWED"})
QUOTE_RESPONSES = frozenset({"ACCEPTED", "REJECTED"})


def allowed_targets(kind: str, current: str) -> FrozenSet[str]:
    return TRANSITIONS.get(kind, {}).get(current, frozenset())


def can_transition(kind: str, current: str, target: str) -> bool:
    return target in allowed_targets(kind, current)


def _as_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class StatusService:
    """
    Applique les transitions de statut. Chaque changement est une écriture
    conditionnelle unique (statut courant vérifié sous le verrou du dépôt) :
    une transition refusée ne modifie jamais la ligne.
    """

    def __init__(self, documents: JsonRepository) -> None:
        self.documents = documents

    def transition(
        self,
        document_id: str,
        target: str,
        *,
        user_id: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> Document:
        target = (target or "").upper()

        def _match(r: Row) -> bool:
            return (
                r.get("id") == document_id
                and (user_id is None or r.get("user_id") == user_id)
                and (kind is None or r.get("kind") == kind)
            )

        def _apply(row: Row) -> Row:
            doc_kind, current = row["kind"], row["status"]
            if target not in STATUSES_BY_KIND[doc_kind]:
                raise InvalidInput(f"statut inconnu pour {doc_kind} : {target}")
            if not can_transition(doc_kind, current, target):
                raise IllegalTransition(doc_kind, current, target)
            now = utcnow()
            row["status"] = target
            row["updated_at"] = now
            if doc_kind == "QUOTE" and target in QUOTE_RESPONSES:
                row["responded_at"] = now
            return row

        row = self.documents.mutate_one(_match, _apply)
        if row is None:
            raise DocumentNotFound(document_id)
        logger.info("Document %s (%s) → %s", document_id, row["kind"], target)
        return Document.model_validate(row)

    # ---------- Raccourcis ---------- #

    def send(self, document_id: str, **kw) -> Document:
        return self.transition(document_id, "SENT", **kw)

    def mark_viewed(self, document_id: str, **kw) -> Document:
        return self.transition(document_id, "VIEWED", **kw)

    def mark_paid(self, document_id: str, **kw) -> Document:
        return self.transition(document_id, "PAID", **kw)

    # ---------- Tâches planifiées ---------- #

    def expire_quotes(self, today: Optional[date] = None) -> int:
        """Devis envoyés/consultés dont la validité est dépassée → CANCELLED."""
        today = today or _utc_today()

        def _expired(r: Row) -> bool:
            valid_until = _as_date(r.get("valid_until"))
            return (
                r.get("kind") == "QUOTE"
                and r.get("status") in AWAITING_RESPONSE
                and valid_until is not None
                and valid_until < today
            )

        count = self.documents.update_where(_expired, {"status": "CANCELLED", "updated_at": utcnow()})
        logger.info("[expire_quotes] %d devis passé(s) en CANCELLED", count)
        return count

    def mark_overdue_invoices(self, today: Optional[date] = None) -> int:
        """Factures envoyées dont l'échéance est dépassée → OVERDUE."""
        today = today or _utc_today()

        def _overdue(r: Row) -> bool:
            due = _as_date(r.get("due_date"))
            return r.get("kind") == "INVOICE" and r.get("status") == "SENT" and due is not None and due < today

        count = self.documents.update_where(_overdue, {"status": "OVERDUE", "updated_at": utcnow()})
        logger.info("[mark_overdue_invoices] %d facture(s) passée(s) en OVERDUE", count)
        return count
