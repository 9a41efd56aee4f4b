from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from facturation.models.client import ClientInfo
from .repo import JsonRepository

logger = logging.getLogger(__name__)


class JsonClientStore:
    def __init__(self, path: os.PathLike | str):
        self.repo = JsonRepository(Path(path), entity_name="client", key="id")

    def save(self, client: ClientInfo) -> ClientInfo:
        self.repo.upsert(client)
        return client

    def find_by_id(self, client_id: str) -> Optional[ClientInfo]:
        d = self.repo.get_by_id(client_id)
        if not d:
            return None
        try:
            return ClientInfo.model_validate(d)
        except ValidationError:
            logger.warning("Client %s invalide dans %s", client_id, self.repo.filepath)
            return None

    def find_by_user(self, user_id: str) -> List[ClientInfo]:
        out: List[ClientInfo] = []
        for d in self.repo.find(lambda x: x.get("user_id") == user_id):
            try:
                out.append(ClientInfo.model_validate(d))
            except ValidationError:
                # On ignore les entrées invalides
                continue
        return out
