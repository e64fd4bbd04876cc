"""Erreurs métier typées, remontées aux appelants (routes, jobs)."""
from __future__ import annotations
from typing import Optional


class FacturFlowError(Exception):
    pass


class Unauthorized(FacturFlowError):
    pass


class NotFound(FacturFlowError, LookupError):
    entity = "object"

    def __init__(self, obj_id: object = None, message: Optional[str] = None):
        self.obj_id = obj_id
        super().__init__(message or f"{self.entity} {obj_id} introuvable")


class DocumentNotFound(NotFound):
    entity = "document"


class ClientNotFound(NotFound):
    entity = "client"


class InvalidState(FacturFlowError, ValueError):
    pass


class IllegalTransition(InvalidState):
    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Transition non autorisée ({kind}) : {current} → {target}")


class InvalidInput(FacturFlowError, ValueError):
    """Entrée invalide ; le message est la première règle violée."""


class UpstreamError(FacturFlowError, RuntimeError):
    pass
