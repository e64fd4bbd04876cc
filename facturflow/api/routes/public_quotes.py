from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from facturflow.api.deps import get_services
from facturflow.services import quote_response_service as qr
from facturflow.services.registry import Services

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter(tags=["public"])

REASON_MESSAGES = {
    qr.TOKEN_MISSING: "Le lien utilisé est incomplet.",
    qr.TOKEN_INVALID: "Ce lien n'est pas valide ou a expiré.",
    qr.ALREADY_ACCEPTED: "Ce devis a déjà été accepté.",
    qr.ALREADY_REFUSED: "Ce devis a déjà été refusé.",
    qr.INVALID_STATUS: "Ce devis ne peut plus recevoir de réponse.",
    qr.SERVER_ERROR: "Une erreur est survenue, merci de réessayer plus tard.",
}


def _redirect(path: str, **params: str) -> RedirectResponse:
    return RedirectResponse(f"{path}?{urlencode(params)}")


def _respond(services: Services, action: str, token: Optional[str], note: Optional[str] = None) -> RedirectResponse:
    try:
        res = services.quote_responses.respond(action, token, note)
    except Exception:
        logger.exception("[public/devis/%s] Erreur", action)
        return _redirect("/public/devis/erreur", raison=qr.SERVER_ERROR)
    if not res.ok:
        return _redirect("/public/devis/erreur", raison=res.reason)
    page = "/public/devis/accepte" if action == "accept" else "/public/devis/refuse"
    return _redirect(page, ref=res.document_id)


# ---------- Liens reçus par le client ---------- #

@router.get("/api/public/devis/accept/{token}")
def accept_quote(token: str, services: Services = Depends(get_services)):
    return _respond(services, "accept", token)


@router.get("/api/public/devis/refuse/{token}")
def refuse_quote(token: str, note: Optional[str] = None, services: Services = Depends(get_services)):
    return _respond(services, "refuse", token, note)


@router.get("/api/public/devis/accept/")
@router.get("/api/public/devis/refuse/")
def missing_token():
    return _redirect("/public/devis/erreur", raison=qr.TOKEN_MISSING)


# ---------- Pages ---------- #

@router.get("/public/devis/accepte")
def accepted_page(request: Request, ref: Optional[str] = None):
    return templates.TemplateResponse(request, "quote_accepted.html", {"ref": ref})


@router.get("/public/devis/refuse")
def refused_page(request: Request, ref: Optional[str] = None):
    return templates.TemplateResponse(request, "quote_refused.html", {"ref": ref})


@router.get("/public/devis/erreur")
def error_page(request: Request, raison: Optional[str] = None):
    message = REASON_MESSAGES.get(raison or "", REASON_MESSAGES[qr.SERVER_ERROR])
    return templates.TemplateResponse(request, "quote_error.html", {"raison": raison, "message": message})
