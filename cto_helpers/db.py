# -*- coding: utf-8 -*-
import json
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Union

log = logging.getLogger("cto_hunter.db")


class SeenStore:
    """JSON file holding the identity keys that were already announced.

    The file is a flat JSON array of strings. Order carries no meaning.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        # Serialize writes so a shutdown flush never interleaves with a run flush
        self._write_lock = threading.Lock()

    def load(self) -> List[str]:
        if not self.path.exists():
            log.info(f"No database file at {self.path}, starting fresh")
            return []
        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.error(f"Database load error ({self.path}): {e}. Starting with an empty set.")
            return []
        if not isinstance(parsed, list):
            log.error(f"Database file {self.path} is not a JSON array. Starting with an empty set.")
            return []
        keys = [k for k in parsed if isinstance(k, str) and k]
        if len(keys) != len(parsed):
            log.warning(f"Dropped {len(parsed) - len(keys)} malformed entries from {self.path}")
        log.info(f"Loaded {len(keys)} processed tokens")
        return keys

    def save(self, keys: Iterable[str]) -> bool:
        """Atomically replace the file with ``keys``. Returns False on failure."""
        payload = json.dumps(list(keys), indent=2)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with self._write_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except OSError as e:
                log.error(f"Database save error ({self.path}): {e}. Seen tokens kept in memory only.")
                return False
        log.info("Database saved")
        return True
