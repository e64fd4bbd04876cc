"""
Réponse du client à un devis via un lien public (sans session).

Le jeton est la seule preuve d'identité : un jeton d'acceptation et un jeton
de refus par devis. Une fois le devis sorti de SENT/VIEWED, le jeton reste
valide pour afficher « déjà accepté / déjà refusé » mais ne déclenche plus
aucun changement.
"""
from __future__ import annotations
import logging
from typing import Dict, Literal, Optional
from urllib.parse import quote as urlquote

from pydantic import BaseModel

from facturflow.models.common import utcnow
from facturflow.services.status_machine import AWAITING_RESPONSE
from facturflow.storage.json_repo import JsonRepository, Row

logger = logging.getLogger(__name__)

Action = Literal["accept", "refuse"]

# codes de raison transmis à la page publique
TOKEN_MISSING = "token_manquant"
TOKEN_INVALID = "token_invalide"
ALREADY_ACCEPTED = "deja_accepte"
ALREADY_REFUSED = "deja_refuse"
INVALID_STATUS = "statut_invalide"
SERVER_ERROR = "erreur_serveur"

_TARGET = {"accept": "ACCEPTED", "refuse": "REJECTED"}
_TOKEN_FIELD = {"accept": "accept_token", "refuse": "refuse_token"}


class QuoteResponse(BaseModel):
    ok: bool
    document_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


def _already_reason(status: str) -> str:
    if status == "ACCEPTED":
        return ALREADY_ACCEPTED
    if status == "REJECTED":
        return ALREADY_REFUSED
    return INVALID_STATUS


class QuoteResponseService:
    def __init__(self, documents: JsonRepository) -> None:
        self.documents = documents

    def respond(self, action: Action, token: Optional[str], note: Optional[str] = None) -> QuoteResponse:
        """
        Consomme le jeton : recherche, contrôle du statut et écriture se font
        sous le même verrou ; une seconde visite rend la raison « déjà … ».
        """
        if not token:
            return QuoteResponse(ok=False, reason=TOKEN_MISSING)
        field = _TOKEN_FIELD[action]
        target = _TARGET[action]
        outcome: Dict[str, str] = {}

        def _apply(row: Row) -> Optional[Row]:
            status = row.get("status")
            if status not in AWAITING_RESPONSE:
                outcome["reason"] = _already_reason(status)
                return None
            row["status"] = target
            row["responded_at"] = utcnow()
            row["updated_at"] = row["responded_at"]
            if action == "refuse" and note:
                row["client_note"] = note.strip()[:2000]
            return row

        row = self.documents.mutate_one(
            lambda r: r.get("kind") == "QUOTE" and bool(r.get(field)) and r.get(field) == token,
            _apply,
        )
        if row is None:
            return QuoteResponse(ok=False, reason=TOKEN_INVALID)
        if "reason" in outcome:
            logger.info("Devis %s : réponse ignorée (%s)", row.get("number"), outcome["reason"])
            return QuoteResponse(ok=False, document_id=row["id"], status=row["status"], reason=outcome["reason"])

        logger.info("Devis %s → %s via lien public", row.get("number"), target)
        return QuoteResponse(ok=True, document_id=row["id"], status=target)

    def accept(self, token: Optional[str]) -> QuoteResponse:
        return self.respond("accept", token)

    def refuse(self, token: Optional[str], note: Optional[str] = None) -> QuoteResponse:
        return self.respond("refuse", token, note)


def build_quote_links(app_url: str, accept_token: str, refuse_token: str) -> Dict[str, str]:
    base = app_url.rstrip("/")
    return {
        "accept_url": f"{base}/api/public/devis/accept/{urlquote(accept_token)}",
        "refuse_url": f"{base}/api/public/devis/refuse/{urlquote(refuse_token)}",
    }
