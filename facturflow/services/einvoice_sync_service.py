"""
Synchronisation des statuts de factures électroniques.

1. lit le curseur global (créé à 0 s'il n'existe pas)
2. récupère les évènements postérieurs au curseur, page par page
3. reporte le statut de chaque évènement sur la facture correspondante
4. enregistre le nouveau curseur, une seule fois, en fin de boucle

Le report d'un évènement est conditionné par l'id du dernier évènement déjà
appliqué à la facture : rejouer un évènement ne change rien, et un évènement
plus ancien ne remplace jamais un plus récent.
"""
from __future__ import annotations
import logging
from typing import Optional

from facturflow.models.common import utcnow
from facturflow.models.einvoice import SYNC_STATE_ID, InvoiceEvent, SyncResult, SyncState
from facturflow.storage.json_repo import JsonRepository, Row

logger = logging.getLogger(__name__)


class EInvoiceSyncService:
    def __init__(self, documents: JsonRepository, state: JsonRepository, provider, max_pages: int = 1000) -> None:
        self.documents = documents
        self.state = state
        # objet exposant get_invoice_events(starting_after_id) -> InvoiceEventsPage
        self.provider = provider
        self.max_pages = max_pages

    # ---------- Curseur ---------- #

    def load_state(self) -> SyncState:
        with self.state.locked():
            row = self.state.get_by_id(SYNC_STATE_ID)
            if row is None:
                row = self.state.add(SyncState())
        return SyncState.model_validate(row)

    def _save_cursor(self, last_event_id: int) -> SyncState:
        def _advance(row: Row) -> Optional[Row]:
            # le curseur ne recule jamais
            if int(row.get("last_event_id") or 0) >= last_event_id:
                return None
            row["last_event_id"] = last_event_id
            row["updated_at"] = utcnow()
            return row

        row = self.state.mutate(SYNC_STATE_ID, _advance)
        return SyncState.model_validate(row)

    # ---------- Application ---------- #

    def apply_event(self, event: InvoiceEvent) -> bool:
        """Reporte un évènement sur sa facture ; False si facture inconnue ou déjà à jour."""
        ref = str(event.invoice_id)

        def _match(r: Row) -> bool:
            if r.get("einvoice_ref") != ref:
                return False
            applied = r.get("einvoice_event_id")
            return applied is None or int(applied) < event.id

        updated = self.documents.update_where(_match, {
            "einvoice_status": event.status_code,
            "einvoice_event_id": event.id,
            "updated_at": utcnow(),
        })
        if not updated:
            logger.debug("Évènement %s ignoré (facture %s inconnue ou déjà à jour)", event.id, ref)
        return bool(updated)

    def sync(self) -> SyncResult:
        state = self.load_state()
        cursor = state.last_event_id
        processed = 0
        pages = 0

        try:
            while True:
                if pages >= self.max_pages:
                    logger.warning("Synchronisation interrompue après %d pages (curseur %d)", pages, cursor)
                    break
                page = self.provider.get_invoice_events(cursor)
                pages += 1
                if not page.data:
                    break
                logger.info("Page %d : %d évènement(s) après %d", pages, len(page.data), cursor)

                for event in page.data:
                    if self.apply_event(event):
                        processed += 1
                    cursor = max(cursor, event.id)

                if not page.has_after:
                    break
        except Exception:
            # les factures déjà mises à jour le restent ; le curseur n'avance pas
            logger.exception("Échec de la synchronisation (curseur conservé à %d)", state.last_event_id)
            raise

        saved = self._save_cursor(cursor)
        logger.info("Synchronisation terminée : %d mise(s) à jour, curseur %d", processed, saved.last_event_id)
        return SyncResult(processed=processed, last_event_id=saved.last_event_id, pages=pages)
