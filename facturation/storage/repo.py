from __future__ import annotations

import glob
import json
import logging
import shutil
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel

from facturation.errors import UniqueConstraintError

logger = logging.getLogger(__name__)


_FILE_LOCKS: Dict[Path, threading.RLock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(filepath: Path) -> threading.RLock:
    """Un verrou par fichier : deux repos ouverts sur le même JSON le partagent."""
    key = filepath.resolve()
    with _FILE_LOCKS_GUARD:
        return _FILE_LOCKS.setdefault(key, threading.RLock())


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    Repo JSON générique avec clé primaire configurable.
    - Index uniques (unique_fields) vérifiés sous verrou au moment de l'écriture
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        unique_fields: Sequence[str] = (),
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self.unique_fields = tuple(unique_fields)
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self._lock = _lock_for(self.filepath)
        with self._lock:
            if not self.filepath.exists():
                self._write_raw([])

    # ---------------- I/O bas niveau ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        try:
            with self._lock, self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # Fichier corrompu → mise de côté et repart sur liste vide
            backup = self.filepath.with_suffix(".corrupt.json")
            logger.warning("Fichier %s corrompu, copie vers %s", self.filepath, backup)
            try:
                shutil.copy2(self.filepath, backup)
            except OSError:
                logger.exception("Impossible de sauvegarder %s", self.filepath)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        for old in files[: max(0, len(files) - self.backup_keep)]:
            Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

            if self.filepath.exists() and self.filepath.read_text(encoding="utf-8") == new_dump:
                return

            if self.backup_enabled and self.filepath.exists():
                ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                self._rotate_backups()

            with self.filepath.open("w", encoding="utf-8") as f:
                f.write(new_dump)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    def _check_unique(self, record: Dict[str, Any], data: List[Dict[str, Any]]) -> None:
        k = self.key
        for field in self.unique_fields:
            value = record.get(field)
            if value in (None, ""):
                continue
            for other in data:
                if str(other.get(k)) == str(record.get(k)):
                    continue
                if other.get(field) == value:
                    raise UniqueConstraintError(self.entity_name, field, value)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        return self.find_one(lambda it: str(it.get(self.key)) == str(obj_id))

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            raise ValueError(f"Cannot add {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            if any(str(d.get(k)) == str(record[k]) for d in data):
                raise UniqueConstraintError(self.entity_name, k, record[k])
            self._check_unique(record, data)
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        obj_id = record.get(k)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{k}'")
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if str(existing.get(k)) == str(obj_id):
                    merged = {**existing, **record}
                    self._check_unique(merged, data)
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise KeyError(f"{self.entity_name} with {k}={obj_id} not found")

    def upsert(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
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

    def find(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        return [r for r in self._read_raw() if predicate(r)]

    def find_one(self, predicate: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        for r in self._read_raw():
            if predicate(r):
                return r
        return None
