# clinic/drafts.py
#
# Node-local autosave for in-progress consultations, one JSON file per
# consultation (`draft_<id>.json`). Drafts are never synced across nodes and
# the last write wins.

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from .config import get_settings

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r'^[A-Za-z0-9_-]+$')


class DraftStore:
    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, consultation_id: str) -> str:
        if not _SAFE_ID.match(consultation_id):
            raise ValueError(f"Invalid consultation id for draft: {consultation_id!r}")
        return os.path.join(self.directory, f"draft_{consultation_id}.json")

    def save(self, consultation_id: str, data: Dict[str, Any]) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self._path(consultation_id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, path)
        logger.debug("DRAFT: Saved draft for consultation %s", consultation_id)

    def load(self, consultation_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(consultation_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("DRAFT: Discarding unreadable draft %s: %s", path, e)
            return None

    def clear(self, consultation_id: str) -> None:
        path = self._path(consultation_id)
        if os.path.exists(path):
            os.remove(path)
            logger.debug("DRAFT: Cleared draft for consultation %s", consultation_id)


draft_store = DraftStore(get_settings().drafts_dir)
