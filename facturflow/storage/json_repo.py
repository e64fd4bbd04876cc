from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Union[BaseModel, Mapping[str, Any]])

Row = Dict[str, Any]
Predicate = Callable[[Row], bool]


def _json_default(o: Any) -> Any:
    if isinstance(o, BaseModel):
        return o.model_dump(mode="json")
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    # Decimal (montants) et autres : représentation texte exacte
    return str(o)


class JsonRepository(Generic[T]):
    """
    Repo JSON générique avec clé primaire configurable.
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas (réduction du bruit et des .bak)
    - Opérations atomiques (mutate, update_where, increment) : lecture + écriture
      sous le même verrou, aucun appelant ne voit un état intermédiaire.
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- I/O bas niveau ---------------- #

    def _read_raw(self) -> List[Row]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # Fichier corrompu → sauvegarde et repart sur liste vide
            backup = self.filepath.with_suffix(".corrupt.json")
            logger.error("%s corrompu, copie dans %s", self.filepath, backup)
            shutil.copy2(self.filepath, backup)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        # garde les plus récents
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            # si contenu identique → ne rien faire
            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == new_dump:
                    return

            # backup
            if self.backup_enabled and self.backup_keep > 0 and self.filepath.exists():
                ts = datetime.now().strftime("%Y%m%d-%H%M%S")
                backup = self.filepath.with_suffix(f".{ts}.bak.json")
                try:
                    shutil.copy2(self.filepath, backup)
                except OSError as e:
                    logger.warning("Backup impossible pour %s : %s", self.filepath, e)
                self._rotate_backups()

            # write : fichier temporaire puis remplacement (pas de lecture d'un fichier à moitié écrit)
            tmp = self.filepath.with_suffix(".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                f.write(new_dump)
            tmp.replace(self.filepath)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: T) -> Row:
        if isinstance(item, BaseModel):
            return item.model_dump()
        if isinstance(item, Mapping):
            return dict(item)
        return dict(item.__dict__)  # type: ignore[arg-type]

    def _normalize(self, record: Row) -> Row:
        # aller-retour JSON : Decimal/date stockés comme dans le fichier
        return json.loads(json.dumps(record, default=_json_default))

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Row]:
        with self._lock:
            return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Row]:
        k = self.key
        for it in self.list_all():
            if str(it.get(k)) == str(obj_id):
                return it
        return None

    def add(self, item: T) -> Row:
        record = self._normalize(self._to_dict(item))
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self._lock:
            data = self._read_raw()
            if any(str(d.get(k)) == str(record[k]) for d in data):
                raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: T) -> Row:
        record = self._normalize(self._to_dict(item))
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if str(existing.get(k)) == str(obj_id):
                    merged = {**existing, **record}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise KeyError(f"{self.entity_name} with {k}={obj_id} not found")

    def upsert(self, item: T) -> Row:
        with self._lock:
            try:
                return self.update(item)
            except KeyError:
                return self.add(item)

    def delete(self, obj_id: Any) -> bool:
        k = self.key
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if str(d.get(k)) != str(obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    # ---------------- Recherches ---------------- #

    def find(self, predicate: Predicate) -> List[Row]:
        return [r for r in self.list_all() if predicate(r)]

    def find_one(self, predicate: Predicate) -> Optional[Row]:
        for r in self.list_all():
            if predicate(r):
                return r
        return None

    def count(self, predicate: Predicate) -> int:
        return len(self.find(predicate))

    # ---------------- Opérations atomiques ---------------- #

    @contextmanager
    def locked(self):
        """Verrou du dépôt : enchaîne lectures et écritures sans écriture concurrente."""
        with self._lock:
            yield self

    def mutate_one(self, predicate: Predicate, fn: Callable[[Row], Optional[Row]]) -> Optional[Row]:
        """
        Applique fn à la première ligne qui satisfait predicate, sous verrou.
        fn renvoie la nouvelle ligne (ou None pour ne rien écrire) ; une exception
        levée par fn annule l'opération sans rien écrire.
        Retourne la ligne résultante, ou None si aucune ligne ne correspond.
        """
        with self._lock:
            data = self._read_raw()
            for idx, row in enumerate(data):
                if predicate(row):
                    new_row = fn(dict(row))
                    if new_row is None:
                        return row
                    data[idx] = self._normalize(new_row)
                    self._write_raw(data)
                    return data[idx]
            return None

    def mutate(self, obj_id: Any, fn: Callable[[Row], Optional[Row]]) -> Optional[Row]:
        k = self.key
        return self.mutate_one(lambda r: str(r.get(k)) == str(obj_id), fn)

    def update_where(self, predicate: Predicate, changes: Mapping[str, Any]) -> int:
        """Mise à jour conditionnelle en masse ; retourne le nombre de lignes modifiées."""
        patch = self._normalize(dict(changes))
        with self._lock:
            data = self._read_raw()
            count = 0
            for idx, row in enumerate(data):
                if predicate(row):
                    data[idx] = {**row, **patch}
                    count += 1
            if count:
                self._write_raw(data)
            return count

    def increment(self, obj_id: Any, field: str, seed: Mapping[str, Any], step: int = 1) -> Row:
        """
        Incrémente field de la ligne obj_id (créée à partir de seed si absente)
        et retourne la ligne APRÈS incrément, en une seule étape.
        """
        k = self.key
        with self._lock:
            data = self._read_raw()
            for idx, row in enumerate(data):
                if str(row.get(k)) == str(obj_id):
                    row = dict(row)
                    row[field] = int(row.get(field, seed.get(field, 0))) + step
                    data[idx] = row
                    self._write_raw(data)
                    return row
            row = self._normalize({**seed, k: obj_id})
            row[field] = int(row.get(field, 0)) + step
            data.append(row)
            self._write_raw(data)
            return row
