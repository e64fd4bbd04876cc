from __future__ import annotations
import logging
from typing import Optional

from facturflow.models.company import Company
from facturflow.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class CompanyService:
    """Profil vendeur (une fiche par utilisateur, clé = user_id)."""

    def __init__(self, repo: JsonRepository):
        self.repo = repo

    def get(self, user_id: str) -> Optional[Company]:
        d = self.repo.get_by_id(user_id)
        return Company(**d) if d else None

    def save(self, company: Company) -> Company:
        self.repo.upsert(company)
        logger.info("Profil société enregistré (user=%s)", company.user_id)
        return company

    def prefix_lookup(self, user_id: str, kind: str) -> Optional[str]:
        """Préfixe de numérotation propre à l'utilisateur (factures uniquement)."""
        if kind != "INVOICE":
            return None
        company = self.get(user_id)
        return company.invoice_prefix if company else None
