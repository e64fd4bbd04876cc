from __future__ import annotations
import logging
from datetime import date
from typing import Callable, Optional

from facturflow.config import NumberingSettings
from facturflow.errors import InvalidInput
from facturflow.models.document import DOCUMENT_KINDS
from facturflow.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


def format_number(prefix: str, year: int, value: int, padding: int = 4) -> str:
    return f"{prefix}-{year}-{value:0{padding}d}"


class SequenceService:
    """
    Numérotation des documents : un compteur par (utilisateur, nature).
    Le compteur n'est jamais décrémenté ni réutilisé ; l'année n'apparaît que
    dans le libellé (pas de remise à zéro au 1er janvier).
    Un numéro consommé dont la création échoue ensuite n'est pas récupéré.
    L'incrément est atomique au sein d'un processus (verrou du dépôt) : un seul
    processus (un worker uvicorn, crons compris) doit écrire dans data_dir.
    """

    def __init__(
        self,
        repo: JsonRepository,
        numbering: Optional[NumberingSettings] = None,
        prefix_lookup: Optional[Callable[[str, str], Optional[str]]] = None,
    ) -> None:
        self.repo = repo
        self.numbering = numbering or NumberingSettings()
        # (user_id, kind) -> préfixe propre à l'utilisateur (ex: profil société), ou None
        self.prefix_lookup = prefix_lookup

    # ---------- Helpers ---------- #

    @staticmethod
    def _counter_id(user_id: str, kind: str) -> str:
        return f"{user_id}:{kind}"

    @staticmethod
    def _check_kind(kind: str) -> str:
        k = (kind or "").upper()
        if k not in DOCUMENT_KINDS:
            raise InvalidInput(f"nature de document inconnue : {kind!r}")
        return k

    def prefix_for(self, user_id: str, kind: str) -> str:
        override = self.prefix_lookup(user_id, kind) if self.prefix_lookup else None
        if override:
            return override
        return {
            "QUOTE": self.numbering.quote_prefix,
            "INVOICE": self.numbering.invoice_prefix,
            "DEPOSIT": self.numbering.deposit_prefix,
            "RECEIPT": self.numbering.receipt_prefix,
        }[kind]

    # ---------- API ---------- #

    def allocate(self, user_id: str, kind: str) -> int:
        """Incrémente et lit le compteur en une seule étape ; retourne la valeur consommée."""
        k = self._check_kind(kind)
        row = self.repo.increment(
            self._counter_id(user_id, k),
            "next_value",
            seed={"user_id": user_id, "kind": k, "next_value": 1},
        )
        # next_value a déjà été incrémenté : la valeur utilisée est la précédente
        return int(row["next_value"]) - 1

    def next_number(self, user_id: str, kind: str, *, year: Optional[int] = None) -> str:
        k = self._check_kind(kind)
        value = self.allocate(user_id, k)
        number = format_number(self.prefix_for(user_id, k), year or date.today().year, value, self.numbering.padding)
        logger.debug("Numéro attribué %s (user=%s)", number, user_id)
        return number

    def peek(self, user_id: str, kind: str, *, year: Optional[int] = None) -> str:
        """Prochain numéro, sans le consommer (aperçu avant validation)."""
        k = self._check_kind(kind)
        row = self.repo.get_by_id(self._counter_id(user_id, k))
        value = int(row["next_value"]) if row else 1
        return format_number(self.prefix_for(user_id, k), year or date.today().year, value, self.numbering.padding)
