from __future__ import annotations
import logging
from typing import List, Optional

from pydantic import ValidationError

from facturflow.errors import ClientNotFound, InvalidState
from facturflow.models.client import Client
from facturflow.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class ClientService:
    def __init__(self, repo: JsonRepository, documents: JsonRepository):
        self.repo = repo
        self.documents = documents

    def list_clients(self, user_id: str) -> List[Client]:
        out: List[Client] = []
        for d in self.repo.find(lambda r: r.get("user_id") == user_id):
            try:
                out.append(Client(**d))
            except ValidationError as e:
                # entrée invalide : signalée, mais la liste reste utilisable
                logger.warning("Client %s ignoré (invalide) : %s", d.get("id"), e.errors()[0]["msg"])
        return out

    def get(self, client_id: str, user_id: Optional[str] = None) -> Client:
        d = self.repo.get_by_id(client_id)
        if d is None or (user_id is not None and d.get("user_id") != user_id):
            raise ClientNotFound(client_id)
        return Client(**d)

    def add_client(self, client: Client) -> Client:
        self.repo.add(client)
        logger.info("Client créé %s (%s)", client.id, client.display_name)
        return client

    def update_client(self, client: Client) -> Client:
        self.get(client.id, client.user_id)
        client.touch()
        self.repo.update(client)
        return client

    def delete_client(self, client_id: str, user_id: Optional[str] = None) -> None:
        self.get(client_id, user_id)
        # un client référencé par un document ne peut pas être supprimé
        used = self.documents.count(lambda r: r.get("client_id") == client_id)
        if used:
            raise InvalidState(f"client {client_id} utilisé par {used} document(s)")
        self.repo.delete(client_id)
        logger.info("Client supprimé %s", client_id)
