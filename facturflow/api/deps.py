from __future__ import annotations
import secrets
from typing import Optional

from fastapi import Header, Request

from facturflow.errors import Unauthorized
from facturflow.services.registry import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_cron_secret(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """Authorization: Bearer <CRON_SECRET> ; secret absent côté serveur = tout refuser."""
    secret = get_services(request).settings.cron_secret
    if not secret or not authorization:
        raise Unauthorized("Unauthorized")
    if not secrets.compare_digest(authorization.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
        raise Unauthorized("Unauthorized")


def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    # l'authentification est assurée en amont (passerelle) : on ne lit que l'identifiant
    return x_user_id
