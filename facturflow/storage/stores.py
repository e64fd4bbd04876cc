from __future__ import annotations
from pathlib import Path
from typing import Union

from facturflow.storage.json_repo import JsonRepository


class Stores:
    """
    Un fichier JSON par collection, sous data_dir.
    Une seule instance de dépôt par fichier : tous les services partagent le
    même verrou, condition des écritures conditionnelles atomiques.
    """

    def __init__(self, data_dir: Union[str, Path], *, backup_keep: int = 5) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        def _repo(name: str, entity: str, key: str = "id") -> JsonRepository:
            return JsonRepository(self.data_dir / f"{name}.json", entity_name=entity, key=key, backup_keep=backup_keep)

        self.documents = _repo("documents", "document")
        self.clients = _repo("clients", "client")
        self.companies = _repo("companies", "company", key="user_id")
        self.counters = _repo("counters", "counter")
        self.sync_state = _repo("einvoice_sync", "sync_state")
