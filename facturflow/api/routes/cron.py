from __future__ import annotations
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from facturflow.api.deps import get_services, require_cron_secret
from facturflow.services.registry import Services

logger = logging.getLogger(__name__)

# le secret est vérifié avant toute exécution
router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.get("/update-expired-quotes")
def update_expired_quotes(services: Services = Depends(get_services)):
    try:
        updated = services.status.expire_quotes()
    except Exception:
        logger.exception("[cron/update-expired-quotes] Erreur")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    return {"success": True, "updated": updated}


@router.get("/update-overdue")
def update_overdue(services: Services = Depends(get_services)):
    try:
        updated = services.status.mark_overdue_invoices()
    except Exception:
        logger.exception("[cron/update-overdue] Erreur")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    return {"success": True, "updated": updated}


@router.get("/sync-einvoice-events")
def sync_einvoice_events(services: Services = Depends(get_services)):
    try:
        result = services.einvoice_sync.sync()
    except Exception as e:
        # détail déjà journalisé par le service ; le curseur n'a pas avancé
        logger.error("[cron/sync-einvoice-events] Erreur : %s", e)
        return JSONResponse({"error": "Erreur lors de la synchronisation"}, status_code=500)
    return {"success": True, "processed": result.processed, "lastEventId": result.last_event_id}
