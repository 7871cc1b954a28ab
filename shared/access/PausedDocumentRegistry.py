"""Persisted set of shared sources an administrator has taken out of retrieval."""

import asyncio
import json
import os
import tempfile
from enum import Enum

from shared.helper.HelperConfig import HelperConfig


class DocumentStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class PausedDocumentRegistry:
    """JSON-file backed registry of paused sources.

    The file holds a sorted JSON list of source names. Writes go through a
    temporary file and ``os.replace`` so readers never see a partial file.
    A missing file means nothing is paused.
    """

    def __init__(self, helper_config: HelperConfig, path: str | None = None) -> None:
        self.logging = helper_config.get_logger()
        self.path = path or helper_config.get_path_val("PAUSED_DOCUMENTS_FILE", default="data/paused_documents.json")
        self._lock = asyncio.Lock()

    ##########################################
    ################ READ ####################
    ##########################################

    def _read(self) -> set[str]:
        if not os.path.exists(self.path):
            return set()
        with open(self.path, "r", encoding="utf-8") as handle:
            content = handle.read().strip()
        if not content:
            return set()
        data = json.loads(content)
        if not isinstance(data, list):
            raise ValueError(f"Paused documents file '{self.path}' must contain a JSON list.")
        return {str(source) for source in data}

    async def list(self) -> set[str]:
        """Return the paused sources."""
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def is_paused(self, source: str) -> bool:
        return source in await self.list()

    ##########################################
    ################ WRITE ###################
    ##########################################

    def _write(self, sources: set[str]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".paused-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(sorted(sources), handle, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def set_status(self, source: str, status: DocumentStatus) -> set[str]:
        """Pause or activate a source. Idempotent; the file is only rewritten on change.

        Returns:
            set[str]: The paused sources after the update.
        """
        async with self._lock:
            paused = await asyncio.to_thread(self._read)
            updated = set(paused)
            if status == DocumentStatus.PAUSED:
                updated.add(source)
            else:
                updated.discard(source)
            if updated != paused:
                await asyncio.to_thread(self._write, updated)
                self.logging.info("Document '%s' is now %s.", source, status.value)
            return updated
