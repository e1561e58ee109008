"""File-backed Case Store: one JSON file per persisted case."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Protocol

from casegen.config import CASES_DIR
from casegen.pipeline.models import CaseDocument

logger = logging.getLogger(__name__)

_CASE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class CaseStore(Protocol):
    def save(self, document: CaseDocument) -> str: ...

    def load(self, case_id: str) -> dict: ...


class FileCaseStore:
    """Append-only store: a saved case is never rewritten."""

    def __init__(self, directory: Path | str = CASES_DIR):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, case_id: str) -> Path:
        if not _CASE_ID_RE.match(case_id):
            raise FileNotFoundError(f"Case {case_id} not found")
        return self.directory / f"{case_id}.json"

    def save(self, document: CaseDocument) -> str:
        """Assign a fresh id, persist the document atomically and return the id.

        Writes to a temporary file first, then atomically replaces the
        target via os.replace(), so a crash never leaves half-written JSON.
        """
        case_id = str(uuid.uuid4())[:8]
        while self._path(case_id).exists():
            case_id = str(uuid.uuid4())[:8]
        document.id = case_id

        data = json.dumps(document.to_dict(), indent=2, default=str, ensure_ascii=False)
        # Write to temp in the same directory so os.replace() is same-device
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), suffix=".tmp", prefix="case_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(data)
            os.replace(tmp_path, str(self._path(case_id)))
        except BaseException:
            document.id = None
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        logger.info(f"[store] Saved case {case_id} ({len(data):,} bytes)")
        return case_id

    def load(self, case_id: str) -> dict:
        path = self._path(case_id)
        if not path.exists():
            raise FileNotFoundError(f"Case {case_id} not found")
        return json.loads(path.read_text(encoding="utf-8"))

    def list_ids(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))
