"""
Client HTTP de la plateforme de facturation électronique SuperPDP (PA/PDP Peppol).

Authentification OAuth 2.0 « client credentials » ; le jeton est gardé en
mémoire et renouvelé 5 minutes avant son expiration.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from facturflow.config import SuperPDPSettings
from facturflow.errors import UpstreamError
from facturflow.models.einvoice import InvoiceEventsPage, InvoiceSendResponse

logger = logging.getLogger(__name__)

TOKEN_MARGIN_SECONDS = 300
DEFAULT_TOKEN_TTL = 3600


class SuperPDPClient:
    def __init__(self, settings: SuperPDPSettings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._token_lock = threading.Lock()

    # ---------- Auth ---------- #

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token

            if not self.settings.client_id or not self.settings.client_secret:
                raise UpstreamError("SUPERPDP_CLIENT_ID / SUPERPDP_CLIENT_SECRET manquants")

            try:
                res = self.session.post(
                    self.settings.token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.settings.client_id,
                        "client_secret": self.settings.client_secret,
                    },
                    timeout=self.settings.timeout,
                )
            except requests.RequestException as e:
                raise UpstreamError(f"SuperPDP auth injoignable : {e}") from e
            if not res.ok:
                raise UpstreamError(f"SuperPDP auth échoué ({res.status_code}): {res.text}")

            data = res.json()
            ttl = int(data.get("expires_in") or DEFAULT_TOKEN_TTL) - TOKEN_MARGIN_SECONDS
            self._token = data["access_token"]
            self._expires_at = time.monotonic() + max(ttl, 0)
            logger.debug("Jeton SuperPDP renouvelé (valide %ss)", ttl)
            return self._token

    def _request(self, method: str, path: str, what: str, **kwargs: Any) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}", **kwargs.pop("headers", {})}
        url = f"{self.settings.base_url.rstrip('/')}{path}"
        try:
            res = self.session.request(method, url, headers=headers, timeout=self.settings.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"SuperPDP {what} injoignable : {e}") from e
        if not res.ok:
            raise UpstreamError(f"SuperPDP {what} échoué ({res.status_code}): {res.text}")
        return res

    # ---------- API ---------- #

    def get_invoice_events(self, starting_after_id: int = 0) -> InvoiceEventsPage:
        """Évènements postérieurs au curseur (paramètre omis quand le curseur vaut 0)."""
        params: Dict[str, int] = {"starting_after_id": starting_after_id} if starting_after_id > 0 else {}
        res = self._request("GET", "/v1.beta/invoice_events", "events", params=params)
        return InvoiceEventsPage.model_validate(res.json())

    def convert_invoice_to_xml(self, invoice: Dict[str, Any]) -> str:
        """EN16931 JSON → XML CII (conversion faite par la plateforme)."""
        res = self._request(
            "POST",
            "/v1.beta/invoices/convert",
            "convert",
            params={"from": "en16931", "to": "cii"},
            json=invoice,
        )
        return res.text

    def send_invoice_xml(self, xml: str) -> InvoiceSendResponse:
        res = self._request(
            "POST",
            "/v1.beta/invoices",
            "envoi",
            data=xml.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )
        return InvoiceSendResponse.model_validate(res.json())
